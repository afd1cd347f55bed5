from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "attendance_types": {"id", "slug", "kind", "config", "priority", "is_active"},
    "qr_code_usages": {"id", "code_id", "used_at"},
    "alembic_version": {"version_num"},
}

REQUIRED_UNIQUE_COLUMNS: dict[str, str] = {
    "attendance_types": "slug",
    "qr_code_usages": "code_id",
}


def _unique_columns(inspector: Any, table_name: str) -> set[str]:
    columns: set[str] = set()
    for constraint in inspector.get_unique_constraints(table_name) or []:
        columns.update(constraint.get("column_names") or [])
    for index in inspector.get_indexes(table_name) or []:
        if index.get("unique"):
            columns.update(index.get("column_names") or [])
    return columns


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_columns - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_unique_columns(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    # One-time QR consumption is only atomic while code_id stays unique.
    for table_name, column_name in REQUIRED_UNIQUE_COLUMNS.items():
        try:
            unique_columns = _unique_columns(inspector, table_name)
        except Exception as exc:
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        if column_name not in unique_columns:
            issues.append(f"MISSING_UNIQUE:{table_name}:{column_name}")


def _check_alembic_version(engine: Engine, issues: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return
    if row is None or not str(row).strip():
        issues.append("ALEMBIC_VERSION_EMPTY")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Check that the tables attendance validation relies on match the ORM models."""
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_unique_columns(inspector, issues, warnings)
    _check_alembic_version(engine, issues)

    return SchemaGuardResult(ok=not issues, checked_at_utc=checked_at_utc, issues=issues, warnings=warnings)
