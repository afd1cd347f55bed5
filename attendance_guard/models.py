from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_guard.db import Base


class AttendanceTypeKind(str, enum.Enum):
    GEO_POLYGON = "geo_polygon"
    WIFI_IP = "wifi_ip"
    ROUTE_WAYPOINT = "route_waypoint"
    QR_CODE = "qr_code"


class ValidationMode(str, enum.Enum):
    ANY = "any"
    ALL = "all"


JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class AttendanceType(Base):
    __tablename__ = "attendance_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(191), nullable=False, unique=True, index=True)
    # Stored as plain text so rows with an unrecognized kind can still be loaded and reported.
    kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    qr_code_usages: Mapped[list[QrCodeUsage]] = relationship(back_populates="attendance_type")


class QrCodeUsage(Base):
    __tablename__ = "qr_code_usages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code_id: Mapped[str] = mapped_column(String(191), nullable=False, unique=True)
    attendance_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_types.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    attendance_type: Mapped[AttendanceType | None] = relationship(back_populates="qr_code_usages")
