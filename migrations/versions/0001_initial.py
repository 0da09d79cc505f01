"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Social account connections table
    op.create_table(
        "social_account_connections",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("external_account_id", sa.String(255), nullable=True),
        sa.Column("external_account_handle", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending_auth"),
        sa.Column("encrypted_access_token", sa.Text(), nullable=True),
        sa.Column("encrypted_refresh_token", sa.Text(), nullable=True),
        sa.Column("token_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.JSON(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("refresh_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "platform", "external_account_id", name="uq_user_platform_external"
        ),
    )
    op.create_index(
        "ix_social_account_connections_user_id", "social_account_connections", ["user_id"]
    )
    op.create_index(
        "ix_connections_status_expiry",
        "social_account_connections",
        ["status", "token_expires_at"],
    )

    # Authorization requests table (single-use OAuth state)
    op.create_table(
        "authorization_requests",
        sa.Column("state", sa.String(128), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("redirect_uri", sa.String(2048), nullable=False),
        sa.Column("code_verifier", sa.String(128), nullable=True),
        sa.Column("scopes", sa.JSON(), nullable=True),
        sa.Column("connection_id", sa.UUID(), nullable=True),
        sa.Column("previous_status", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("state"),
    )
    op.create_index(
        "ix_authorization_requests_expires_at", "authorization_requests", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_authorization_requests_expires_at", table_name="authorization_requests")
    op.drop_table("authorization_requests")

    op.drop_index("ix_connections_status_expiry", table_name="social_account_connections")
    op.drop_index(
        "ix_social_account_connections_user_id", table_name="social_account_connections"
    )
    op.drop_table("social_account_connections")
