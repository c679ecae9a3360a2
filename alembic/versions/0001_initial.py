"""Initial schema for cached token metadata and broker key-value entries."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.sqlite import JSON

revision = "0001_initial"
down_revision = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def upgrade() -> None:
    op.create_table(
        "tokens",
        sa.Column("id", sa.String(length=255), primary_key=True),
        # SQLAlchemy persists enum member names
        sa.Column("type", sa.Enum("USER", "PAGE", "SYSTEM_USER", "APP", name="token_type"), nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("scopes", JSON, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("app_id", sa.String(length=64), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("raw_metadata", JSON, nullable=False, server_default=sa.text("'{}'")),
    )

    op.create_table(
        "kv_entries",
        sa.Column("key", sa.String(length=255), primary_key=True),
        sa.Column("value", JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_kv_entries_expires_at", "kv_entries", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_kv_entries_expires_at", table_name="kv_entries")
    op.drop_table("kv_entries")
    op.drop_table("tokens")
    op.execute("DROP TYPE IF EXISTS token_type")
