"""social connection token refresh

Revision ID: 0002_connection_refresh
Revises: 0001_initial
Create Date: 2026-10-18

Long-lived user token and linked Page id, so page tokens can be re-derived.
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision: str = "0002_connection_refresh"
down_revision: str | None = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("social_connections", sa.Column("page_id", sa.String(128), nullable=True))
    op.add_column(
        "social_connections", sa.Column("user_access_token", sa.Text(), nullable=True)
    )
    op.add_column(
        "social_connections",
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("social_connections", "last_verified_at")
    op.drop_column("social_connections", "user_access_token")
    op.drop_column("social_connections", "page_id")
