import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attendance_guard.db import engine
from attendance_guard.errors import ApiError, ConfigShapeError, UnknownAttendanceKindError, error_response
from attendance_guard.logging_utils import setup_json_logging
from attendance_guard.routers import admin, attendance
from attendance_guard.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from attendance_guard.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("attendance_guard.request")
startup_logger = logging.getLogger("attendance_guard.startup")

HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Request validation failed."


async def _run_schema_guard(application: FastAPI) -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    application.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@asynccontextmanager
async def lifespan(application: FastAPI):
    await _run_schema_guard(application)
    yield


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "flags": getattr(request.state, "flags", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)


@app.exception_handler(ConfigShapeError)
async def handle_config_shape_error(request: Request, exc: ConfigShapeError) -> JSONResponse:
    return error_response(request, status_code=422, code="INVALID_ATTENDANCE_CONFIG", message=str(exc))


@app.exception_handler(UnknownAttendanceKindError)
async def handle_unknown_kind(request: Request, exc: UnknownAttendanceKindError) -> JSONResponse:
    return error_response(request, status_code=422, code="UNKNOWN_ATTENDANCE_KIND", message=str(exc))


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(request, status_code=422, code="VALIDATION_ERROR", message=_validation_message(exc))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")


app.include_router(attendance.router)
app.include_router(admin.router)


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if schema_guard_result is None:
        schema_guard_result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
            warnings=[],
        )
    return {
        "status": "ok",
        "validation_mode": settings.global_validation_mode,
        "schema_guard": schema_guard_result.to_dict(),
    }
