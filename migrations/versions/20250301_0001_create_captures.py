"""create captures table

Revision ID: 20250301_0001
Revises:
Create Date: 2025-03-01 00:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20250301_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "captures",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("image_url", sa.String(length=2048), nullable=False),
        sa.Column(
            "latitude",
            sa.Float(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "longitude",
            sa.Float(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("device_info", sa.Text(), nullable=True),
        sa.Column(
            "ip_address",
            sa.String(length=64),
            server_default=sa.text("''"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_captures_ip_address",
        "captures",
        ["ip_address"],
        unique=True,
        postgresql_where=sa.text("ip_address <> ''"),
        sqlite_where=sa.text("ip_address <> ''"),
    )


def downgrade() -> None:
    op.drop_index("uq_captures_ip_address", table_name="captures")
    op.drop_table("captures")
