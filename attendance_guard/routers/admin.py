from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from attendance_guard.db import get_db
from attendance_guard.schemas import (
    AttendanceTypeCreate,
    AttendanceTypeRead,
    AttendanceTypeUpdate,
    QrCodeGenerateRequest,
    QrCodeRead,
)
from attendance_guard.services.attendance_types import (
    add_generated_qr_code,
    create_attendance_type,
    list_attendance_types,
    update_attendance_type,
)
from attendance_guard.settings import get_settings

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/attendance-types", response_model=list[AttendanceTypeRead])
def get_attendance_types(db: Session = Depends(get_db)) -> list[AttendanceTypeRead]:
    return [AttendanceTypeRead.model_validate(item) for item in list_attendance_types(db)]


@router.post("/attendance-types", response_model=AttendanceTypeRead, status_code=201)
def post_attendance_type(payload: AttendanceTypeCreate, db: Session = Depends(get_db)) -> AttendanceTypeRead:
    return AttendanceTypeRead.model_validate(create_attendance_type(db, payload))


@router.patch("/attendance-types/{type_id}", response_model=AttendanceTypeRead)
def patch_attendance_type(
    type_id: int,
    payload: AttendanceTypeUpdate,
    db: Session = Depends(get_db),
) -> AttendanceTypeRead:
    return AttendanceTypeRead.model_validate(update_attendance_type(db, type_id, payload))


@router.post("/attendance-types/{type_id}/qr-codes", response_model=QrCodeRead, status_code=201)
def post_qr_code(
    type_id: int,
    payload: QrCodeGenerateRequest,
    db: Session = Depends(get_db),
) -> QrCodeRead:
    entry = add_generated_qr_code(db, type_id, name=payload.name, prefix=get_settings().qr_code_prefix)
    return QrCodeRead.model_validate(entry)
