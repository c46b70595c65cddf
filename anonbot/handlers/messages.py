"""Message listeners – anonymize new messages and mirror edits/deletes."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands

from anonbot.middleware.logging_mw import log_event
from anonbot.services.capture import capture
from anonbot.services.relay import RelayPipeline

logger = logging.getLogger(__name__)


class RelayListeners(commands.Cog):
    """Gateway events feeding the relay pipeline."""

    def __init__(self, pipeline: RelayPipeline) -> None:
        self.pipeline = pipeline

    @commands.Cog.listener("on_message")
    @log_event("message")
    async def on_message(self, message: discord.Message) -> None:
        if message.guild is None or message.author.bot or message.webhook_id is not None:
            return
        outcome = await self.pipeline.handle_message(capture(message))
        logger.debug("Message %d in channel %d: %s", message.id, message.channel.id, outcome.value)

    @commands.Cog.listener("on_raw_message_edit")
    @log_event("message_edit")
    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent) -> None:
        data = payload.data
        if "content" not in data:
            return  # embed unfurl or other non-content update
        author = data.get("author") or {}
        if author.get("bot") or data.get("webhook_id"):
            return
        await self.pipeline.handle_edit(payload.message_id, data.get("content") or "")

    @commands.Cog.listener("on_raw_message_delete")
    @log_event("message_delete")
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        await self.pipeline.handle_delete(payload.message_id)

    @commands.Cog.listener("on_raw_bulk_message_delete")
    @log_event("bulk_message_delete")
    async def on_raw_bulk_message_delete(
        self, payload: discord.RawBulkMessageDeleteEvent
    ) -> None:
        for message_id in payload.message_ids:
            await self.pipeline.handle_delete(message_id)
