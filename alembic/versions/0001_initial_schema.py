"""Initial schema with shares, recipients, tokens, grants and system config.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:12:41

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "shares",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shares_name", "shares", ["name"], unique=True)

    op.create_table(
        "share_schemas",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("share_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["share_id"], ["shares.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_id", "name", name="uq_share_schemas_share_name"),
    )
    op.create_index("ix_share_schemas_share_id", "share_schemas", ["share_id"])

    op.create_table(
        "shared_tables",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("schema_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=2048), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["schema_id"], ["share_schemas.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("schema_id", "name", name="uq_shared_tables_schema_name"),
    )
    op.create_index("ix_shared_tables_schema_id", "shared_tables", ["schema_id"])

    op.create_table(
        "recipients",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recipients_name", "recipients", ["name"], unique=True)

    op.create_table(
        "recipient_tokens",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("recipient_id", sa.Uuid(), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("token_hint", sa.String(length=8), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recipient_tokens_recipient_id", "recipient_tokens", ["recipient_id"])
    op.create_index("ix_recipient_tokens_token_hint", "recipient_tokens", ["token_hint"])
    op.create_index("ix_recipient_tokens_is_active", "recipient_tokens", ["is_active"])

    op.create_table(
        "access_grants",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("recipient_id", sa.Uuid(), nullable=False),
        sa.Column("share_id", sa.Uuid(), nullable=False),
        sa.Column("granted_by", sa.String(length=255), nullable=True),
        sa.Column(
            "granted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("can_download", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_query", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_rows_per_query", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["share_id"], ["shares.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("recipient_id", "share_id", name="uq_access_grants_recipient_share"),
    )
    op.create_index("ix_access_grants_recipient_id", "access_grants", ["recipient_id"])
    op.create_index("ix_access_grants_share_id", "access_grants", ["share_id"])

    op.create_table(
        "system_config",
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column("config_key", sa.String(length=50), nullable=False),
        sa.Column("encrypted_token", sa.Text(), nullable=True),
        sa.Column("recipient_id", sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("config_key"),
    )


def downgrade() -> None:
    op.drop_table("system_config")
    op.drop_index("ix_access_grants_share_id", table_name="access_grants")
    op.drop_index("ix_access_grants_recipient_id", table_name="access_grants")
    op.drop_table("access_grants")
    op.drop_index("ix_recipient_tokens_is_active", table_name="recipient_tokens")
    op.drop_index("ix_recipient_tokens_token_hint", table_name="recipient_tokens")
    op.drop_index("ix_recipient_tokens_recipient_id", table_name="recipient_tokens")
    op.drop_table("recipient_tokens")
    op.drop_index("ix_recipients_name", table_name="recipients")
    op.drop_table("recipients")
    op.drop_index("ix_shared_tables_schema_id", table_name="shared_tables")
    op.drop_table("shared_tables")
    op.drop_index("ix_share_schemas_share_id", table_name="share_schemas")
    op.drop_table("share_schemas")
    op.drop_index("ix_shares_name", table_name="shares")
    op.drop_table("shares")
