"""Initial migration – create webhooks, relay_channels, message_mappings, bot_state tables.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── webhooks ──────────────────────────────────────────────────────
    op.create_table(
        "webhooks",
        sa.Column("channel_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("webhook_id", sa.BigInteger(), nullable=False),
        sa.Column("webhook_token", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    # ── relay_channels ────────────────────────────────────────────────
    op.create_table(
        "relay_channels",
        sa.Column("channel_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("enabled_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_relay_channels_guild", "relay_channels", ["guild_id"])

    # ── message_mappings ──────────────────────────────────────────────
    op.create_table(
        "message_mappings",
        sa.Column("original_message_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("relayed_message_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("webhook_id", sa.BigInteger(), nullable=False),
        sa.Column("webhook_token", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    # ── bot_state ─────────────────────────────────────────────────────
    op.create_table(
        "bot_state",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("bot_state")
    op.drop_table("message_mappings")
    op.drop_index("idx_relay_channels_guild", table_name="relay_channels")
    op.drop_table("relay_channels")
    op.drop_table("webhooks")
