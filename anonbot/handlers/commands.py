"""Slash commands – ``/webhook`` for users, ``/relay …`` for administrators."""

from __future__ import annotations

import logging
from datetime import datetime

import discord
from discord import app_commands
from discord.ext import commands
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from anonbot.db.repositories.channel_repo import RelayChannelRepo
from anonbot.db.repositories.mapping_repo import MappingRepo
from anonbot.db.repositories.webhook_repo import WebhookRepo
from anonbot.services.capture import capture_interaction
from anonbot.services.relay import RelayPipeline
from anonbot.services.rotation import RotationScheduler
from anonbot.utils.enums import RelayOutcome

logger = logging.getLogger(__name__)

SUBMIT_REPLIES = {
    RelayOutcome.IGNORED: "This command cannot be used in this channel.",
    RelayOutcome.EMPTY: "You need to provide a message or an attachment.",
    RelayOutcome.RATE_LIMITED: "You are sending commands too quickly. Please wait a moment.",
    RelayOutcome.SENT: "Your message has been sent.",
    RelayOutcome.FAILED: "Your message could not be sent. Please try again later.",
}


def _format_ts(ts: datetime | None) -> str:
    if ts is None:
        return "never"
    return discord.utils.format_dt(ts, style="f")


class RelayCommands(commands.Cog):
    """User submission and channel administration commands."""

    relay = app_commands.Group(
        name="relay",
        description="Manage anonymous relaying in this server.",
        guild_only=True,
        default_permissions=discord.Permissions(administrator=True),
    )

    def __init__(
        self,
        pipeline: RelayPipeline,
        scheduler: RotationScheduler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.pipeline = pipeline
        self.scheduler = scheduler
        self._session_factory = session_factory

    # ── /webhook ──────────────────────────────────────────────────────

    @app_commands.command(name="webhook", description="Send a message or attachment anonymously.")
    @app_commands.describe(message="The message to send", attachment="The attachment to send")
    @app_commands.guild_only()
    async def webhook(
        self,
        interaction: discord.Interaction,
        message: str | None = None,
        attachment: discord.Attachment | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await self.pipeline.submit(capture_interaction(interaction, message, attachment))
        logger.info(
            "/webhook by user %d in channel %s: %s",
            interaction.user.id,
            interaction.channel_id,
            outcome.value,
        )
        await interaction.followup.send(SUBMIT_REPLIES[outcome], ephemeral=True)

    # ── /relay enable | disable ──────────────────────────────────────

    @relay.command(name="enable", description="Anonymize every message in a channel.")
    @app_commands.describe(channel="Channel to enable (defaults to this one)")
    async def relay_enable(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | None = None,
    ) -> None:
        channel_id = channel.id if channel else interaction.channel_id
        if channel_id is None or interaction.guild_id is None:
            await interaction.response.send_message("No channel to enable.", ephemeral=True)
            return

        async with self._session_factory() as session:
            added = await RelayChannelRepo(session).enable(channel_id, interaction.guild_id)

        logger.info(
            "Relay enabled in channel %d by user %d (new=%s)", channel_id, interaction.user.id, added
        )
        text = (
            f"Relaying enabled in <#{channel_id}>."
            if added
            else f"<#{channel_id}> is already relayed."
        )
        await interaction.response.send_message(text, ephemeral=True)

    @relay.command(name="disable", description="Stop anonymizing messages in a channel.")
    @app_commands.describe(channel="Channel to disable (defaults to this one)")
    async def relay_disable(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | None = None,
    ) -> None:
        channel_id = channel.id if channel else interaction.channel_id
        if channel_id is None:
            await interaction.response.send_message("No channel to disable.", ephemeral=True)
            return

        async with self._session_factory() as session:
            removed = await RelayChannelRepo(session).disable(channel_id)

        logger.info(
            "Relay disabled in channel %d by user %d (was_enabled=%s)",
            channel_id,
            interaction.user.id,
            removed,
        )
        text = (
            f"Relaying disabled in <#{channel_id}>."
            if removed
            else f"<#{channel_id}> was not relayed."
        )
        await interaction.response.send_message(text, ephemeral=True)

    # ── /relay rotate | status ───────────────────────────────────────

    @relay.command(name="rotate", description="Replace every relay webhook now.")
    async def relay_rotate(self, interaction: discord.Interaction) -> None:
        started = self.scheduler.trigger()
        logger.info(
            "Webhook rotation requested by user %d (started=%s)", interaction.user.id, started
        )
        text = "Webhook rotation started." if started else "A webhook rotation is already running."
        await interaction.response.send_message(text, ephemeral=True)

    @relay.command(name="status", description="Show relay statistics.")
    async def relay_status(self, interaction: discord.Interaction) -> None:
        async with self._session_factory() as session:
            channels = (
                await RelayChannelRepo(session).list_for_guild(interaction.guild_id)
                if interaction.guild_id
                else []
            )
            webhook_count = await WebhookRepo(session).count()
            mapping_count = await MappingRepo(session).count()

        last = await self.scheduler.get_watermark()
        lines = [
            "**Relay status**",
            "",
            f"Relayed channels here: **{len(channels)}**",
        ]
        lines += [f"  • <#{c.channel_id}>" for c in channels]
        lines += [
            f"Webhooks (all servers): **{webhook_count}**",
            f"Tracked messages: **{mapping_count}**",
            f"Last rotation: {_format_ts(last)}",
            f"Next rotation: {_format_ts(self.scheduler.next_due)}",
        ]
        await interaction.response.send_message("\n".join(lines), ephemeral=True)
