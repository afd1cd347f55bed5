from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from attendance_guard.models import AttendanceTypeKind, ValidationMode


class LocationPayload(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)


class PunchValidationRequest(BaseModel):
    # Punch time, client address and the policy are taken server-side.
    location: LocationPayload | None = None
    qr_code: str | None = Field(default=None, max_length=255)


class TypeEvaluationRead(BaseModel):
    attendance_type_id: int | None
    slug: str | None
    kind: str
    passed: bool
    matched_rule_id: str | None = None
    reason: str


class ConfigIssueRead(BaseModel):
    attendance_type_id: int | None
    slug: str | None
    code: str
    detail: str


class PunchValidationResponse(BaseModel):
    passed: bool
    matched_rule_id: str | None = None
    reason: str
    validation_mode: ValidationMode
    evaluations: list[TypeEvaluationRead] = Field(default_factory=list)
    issues: list[ConfigIssueRead] = Field(default_factory=list)


class AttendanceTypeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    slug: str = Field(min_length=2, max_length=191, pattern=r"^[a-z0-9_\-]+$")
    kind: AttendanceTypeKind | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    priority: int = Field(default=100, ge=0)
    is_active: bool = True


class AttendanceTypeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    kind: AttendanceTypeKind | None = None
    config: dict[str, Any] | None = None
    description: str | None = None
    priority: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class AttendanceTypeRead(BaseModel):
    id: int
    name: str
    slug: str
    kind: str | None
    config: dict[str, Any]
    description: str | None = None
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QrCodeGenerateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class QrCodeRead(BaseModel):
    id: str
    name: str
    code: str
    created_at: datetime
    is_active: bool
