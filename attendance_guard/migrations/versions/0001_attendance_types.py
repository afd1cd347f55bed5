"""Attendance types and QR code usage log

Revision ID: 0001_attendance_types
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_attendance_types"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "attendance_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=191), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=True),
        sa.Column(
            "config",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attendance_types_slug", "attendance_types", ["slug"], unique=True)

    op.create_table(
        "qr_code_usages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code_id", sa.String(length=191), nullable=False),
        sa.Column("attendance_type_id", sa.Integer(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["attendance_type_id"], ["attendance_types.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code_id", name="uq_qr_code_usages_code_id"),
    )
    op.create_index(
        "ix_qr_code_usages_attendance_type_id",
        "qr_code_usages",
        ["attendance_type_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_qr_code_usages_attendance_type_id", table_name="qr_code_usages")
    op.drop_table("qr_code_usages")

    op.drop_index("ix_attendance_types_slug", table_name="attendance_types")
    op.drop_table("attendance_types")
