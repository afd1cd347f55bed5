from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_guard.errors import ApiError, ConfigShapeError, UnknownAttendanceKindError
from attendance_guard.models import AttendanceType, AttendanceTypeKind
from attendance_guard.schemas import AttendanceTypeCreate, AttendanceTypeUpdate
from attendance_guard.services.qr_usage import generate_qr_code
from attendance_guard.services.rule_config import parse_attendance_config, resolve_kind


def list_attendance_types(db: Session) -> list[AttendanceType]:
    return list(
        db.scalars(select(AttendanceType).order_by(AttendanceType.priority.asc(), AttendanceType.id.asc())).all()
    )


def load_active_attendance_types(db: Session) -> list[AttendanceType]:
    statement = select(AttendanceType).where(AttendanceType.is_active.is_(True))
    statement = statement.order_by(AttendanceType.priority.asc(), AttendanceType.id.asc())
    return list(db.scalars(statement).all())


def _get_attendance_type(db: Session, type_id: int) -> AttendanceType:
    attendance_type = db.get(AttendanceType, type_id)
    if attendance_type is None:
        raise ApiError(
            status_code=404,
            code="ATTENDANCE_TYPE_NOT_FOUND",
            message="Attendance type not found.",
        )
    return attendance_type


def _validated_config(kind: str | None, slug: str, config: Any) -> tuple[AttendanceTypeKind, dict[str, Any]]:
    try:
        resolved_kind = resolve_kind(kind, slug)
        parsed = parse_attendance_config(resolved_kind, config)
    except (UnknownAttendanceKindError, ConfigShapeError) as exc:
        raise ApiError(
            status_code=422,
            code="INVALID_ATTENDANCE_CONFIG",
            message=str(exc),
        ) from exc
    return resolved_kind, parsed.model_dump(mode="json")


def _commit_or_conflict(db: Session, slug: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="ATTENDANCE_TYPE_SLUG_EXISTS",
            message=f"Attendance type slug '{slug}' is already in use.",
        ) from exc


def create_attendance_type(db: Session, payload: AttendanceTypeCreate) -> AttendanceType:
    kind, config = _validated_config(payload.kind.value if payload.kind else None, payload.slug, payload.config)

    existing_id = db.scalar(select(AttendanceType.id).where(AttendanceType.slug == payload.slug))
    if existing_id is not None:
        raise ApiError(
            status_code=409,
            code="ATTENDANCE_TYPE_SLUG_EXISTS",
            message=f"Attendance type slug '{payload.slug}' is already in use.",
        )

    attendance_type = AttendanceType(
        name=payload.name,
        slug=payload.slug,
        kind=kind.value,
        config=config,
        description=payload.description,
        priority=payload.priority,
        is_active=payload.is_active,
    )
    db.add(attendance_type)
    _commit_or_conflict(db, payload.slug)
    db.refresh(attendance_type)
    return attendance_type


def update_attendance_type(db: Session, type_id: int, payload: AttendanceTypeUpdate) -> AttendanceType:
    attendance_type = _get_attendance_type(db, type_id)
    changes = payload.model_dump(exclude_unset=True)

    if "config" in changes or "kind" in changes:
        kind_value = changes.get("kind", attendance_type.kind)
        if isinstance(kind_value, AttendanceTypeKind):
            kind_value = kind_value.value
        kind, config = _validated_config(
            kind_value,
            attendance_type.slug,
            changes.get("config", attendance_type.config),
        )
        attendance_type.kind = kind.value
        attendance_type.config = config

    for field_name in ("name", "priority", "is_active"):
        if field_name in changes and changes[field_name] is not None:
            setattr(attendance_type, field_name, changes[field_name])
    if "description" in changes:
        attendance_type.description = changes["description"]

    _commit_or_conflict(db, attendance_type.slug)
    db.refresh(attendance_type)
    return attendance_type


def add_generated_qr_code(
    db: Session,
    type_id: int,
    *,
    name: str,
    prefix: str,
) -> dict[str, Any]:
    attendance_type = _get_attendance_type(db, type_id)
    try:
        kind = resolve_kind(attendance_type.kind, attendance_type.slug)
    except UnknownAttendanceKindError:
        kind = None
    if kind != AttendanceTypeKind.QR_CODE:
        raise ApiError(
            status_code=422,
            code="ATTENDANCE_TYPE_NOT_QR",
            message="QR codes can only be added to qr_code attendance types.",
        )

    entry = generate_qr_code(name, prefix=prefix)
    config = dict(attendance_type.config or {})
    config["qr_codes"] = [*list(config.get("qr_codes") or []), entry]
    # Reassign so the JSON column is flagged dirty.
    attendance_type.config = config
    db.commit()
    return entry
