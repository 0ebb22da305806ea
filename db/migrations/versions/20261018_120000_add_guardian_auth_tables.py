"""Add Guardian Auth credential store tables.

Revision ID: 7c3e5a91d2b4
Revises: None
Create Date: 2026-10-18 12:00:00 UTC

Migration naming convention:
- Filename: YYYYMMDD_HHMMSS_slug.py (chronological sorting)
- Revision ID: Random hash (collision-proof for parallel branches)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "7c3e5a91d2b4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "guardian_users",
        sa.Column("id", postgresql.UUID(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        # Lower-cased copy of email; lookups and uniqueness use this column.
        sa.Column("email_normalized", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="user"),
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lock_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extra", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("login_attempts >= 0", name="ck_guardian_users_login_attempts"),
    )
    op.create_index(
        "ux_guardian_users_email_normalized",
        "guardian_users",
        ["email_normalized"],
        unique=True,
    )

    op.create_table(
        "guardian_accounts",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            postgresql.UUID(),
            sa.ForeignKey("guardian_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("provider_account_id", sa.String(length=255), nullable=False),
        sa.UniqueConstraint(
            "provider", "provider_account_id", name="uq_guardian_accounts_provider_account"
        ),
    )
    op.create_index("ix_guardian_accounts_user_id", "guardian_accounts", ["user_id"])

    op.create_table(
        "guardian_verification_tokens",
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False),
        sa.Column("purpose", sa.String(length=30), nullable=False),
        sa.Column("expires", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("identifier", "token", name="pk_guardian_verification_tokens"),
        sa.CheckConstraint("kind IN ('otp', 'link')", name="ck_guardian_tokens_kind"),
        sa.CheckConstraint(
            "purpose IN ('email_verification', 'password_reset')",
            name="ck_guardian_tokens_purpose",
        ),
    )
    op.create_index(
        "ix_guardian_verification_tokens_expires",
        "guardian_verification_tokens",
        ["expires"],
    )

    op.create_table(
        "guardian_sessions",
        sa.Column("session_token", sa.String(length=255), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(),
            sa.ForeignKey("guardian_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("expires", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_guardian_sessions_user_id", "guardian_sessions", ["user_id"])
    op.create_index("ix_guardian_sessions_expires", "guardian_sessions", ["expires"])


def downgrade() -> None:
    op.drop_index("ix_guardian_sessions_expires", table_name="guardian_sessions")
    op.drop_index("ix_guardian_sessions_user_id", table_name="guardian_sessions")
    op.drop_table("guardian_sessions")
    op.drop_index(
        "ix_guardian_verification_tokens_expires", table_name="guardian_verification_tokens"
    )
    op.drop_table("guardian_verification_tokens")
    op.drop_index("ix_guardian_accounts_user_id", table_name="guardian_accounts")
    op.drop_table("guardian_accounts")
    op.drop_index("ux_guardian_users_email_normalized", table_name="guardian_users")
    op.drop_table("guardian_users")
