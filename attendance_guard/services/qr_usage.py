from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_guard.models import QrCodeUsage

logger = logging.getLogger("attendance_guard.qr_usage")


class QrUsageStore(Protocol):
    """Consumption log for one-time QR codes, keyed by code id."""

    def is_consumed(self, code_id: str) -> bool: ...

    def try_consume(self, code_id: str, *, attendance_type_id: int | None = None) -> bool:
        """Mark the code used. True only for the call that performed the consumption."""
        ...


class InMemoryQrUsageStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._used_at: dict[str, datetime] = {}

    def is_consumed(self, code_id: str) -> bool:
        with self._lock:
            return code_id in self._used_at

    def try_consume(self, code_id: str, *, attendance_type_id: int | None = None) -> bool:
        with self._lock:
            if code_id in self._used_at:
                return False
            self._used_at[code_id] = datetime.now(timezone.utc)
            return True


class SqlQrUsageStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def is_consumed(self, code_id: str) -> bool:
        usage_id = self.db.scalar(select(QrCodeUsage.id).where(QrCodeUsage.code_id == code_id))
        return usage_id is not None

    def try_consume(self, code_id: str, *, attendance_type_id: int | None = None) -> bool:
        # The unique index on code_id arbitrates concurrent consumers.
        self.db.add(
            QrCodeUsage(
                code_id=code_id,
                attendance_type_id=attendance_type_id,
                used_at=datetime.now(timezone.utc),
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "qr_code_consume_conflict",
                extra={"code_id": code_id, "attendance_type_id": attendance_type_id},
            )
            return False
        return True


def generate_qr_code(name: str, *, prefix: str = "AERO-", now_utc: datetime | None = None) -> dict[str, Any]:
    created_at = now_utc or datetime.now(timezone.utc)
    return {
        "id": f"qr_{secrets.token_hex(6)}",
        "name": name,
        "code": f"{prefix}{secrets.token_hex(8).upper()}",
        "created_at": created_at.isoformat(),
        "is_active": True,
    }
