from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from attendance_guard.db import get_db
from attendance_guard.errors import ApiError
from attendance_guard.schemas import PunchValidationRequest, PunchValidationResponse
from attendance_guard.services.attendance_types import load_active_attendance_types
from attendance_guard.services.evaluators import Location, PunchContext
from attendance_guard.services.qr_usage import SqlQrUsageStore
from attendance_guard.services.validation import validate_punch
from attendance_guard.settings import get_settings

router = APIRouter(tags=["attendance"])


def _client_ip(request: Request) -> str | None:
    # X-Forwarded-For is client-controlled unless a trusted proxy overwrites it.
    if get_settings().trust_forwarded_for:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post(
    "/api/attendance/validate",
    response_model=PunchValidationResponse,
    responses={403: {"model": PunchValidationResponse}},
)
def validate_attendance(
    payload: PunchValidationRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    attendance_types = load_active_attendance_types(db)
    if not attendance_types:
        raise ApiError(
            status_code=422,
            code="NO_ACTIVE_ATTENDANCE_TYPE",
            message="No active attendance type is configured for this punch.",
        )

    location = None
    if payload.location is not None:
        location = Location(
            lat=payload.location.lat,
            lng=payload.location.lng,
            accuracy=payload.location.accuracy,
        )
    context = PunchContext(
        location=location,
        ip_address=_client_ip(request),
        qr_code=payload.qr_code,
        timestamp=datetime.now(timezone.utc),
    )

    outcome = validate_punch(
        attendance_types,
        context,
        validation_mode=get_settings().global_validation_mode,
        usage_store=SqlQrUsageStore(db),
    )
    request.state.flags = {
        "passed": outcome.passed,
        "matched_rule_id": outcome.result.matched_rule_id,
        "config_issues": len(outcome.issues),
    }

    body = PunchValidationResponse.model_validate(outcome.to_dict())
    if not outcome.passed:
        return JSONResponse(status_code=403, content=body.model_dump(mode="json"))
    return body
