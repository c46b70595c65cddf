"""discord.py implementation of ``RelayPlatform``."""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Iterator
from contextlib import contextmanager

import aiohttp
import discord

from anonbot.services.platform import (
    AttachmentData,
    AttachmentRef,
    PlatformError,
    WebhookCredentials,
)
from anonbot.utils.enums import PlatformErrorKind

logger = logging.getLogger(__name__)

ATTACHMENT_TIMEOUT = aiohttp.ClientTimeout(total=30)


def classify(error: Exception) -> PlatformErrorKind:
    """Map a discord.py / aiohttp exception onto the platform-neutral kinds."""
    if isinstance(error, discord.NotFound):
        return PlatformErrorKind.NOT_FOUND
    if isinstance(error, discord.Forbidden):
        return PlatformErrorKind.FORBIDDEN
    if isinstance(error, discord.HTTPException) and error.status == 429:
        return PlatformErrorKind.RATE_LIMITED
    return PlatformErrorKind.TRANSIENT


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (
        discord.HTTPException,
        discord.InvalidData,
        aiohttp.ClientError,
        asyncio.TimeoutError,
    ) as e:
        raise PlatformError(classify(e), f"{action}: {e}") from e


class DiscordPlatform:
    """Webhook, message and channel operations through a running discord.py client."""

    def __init__(
        self,
        client: discord.Client,
        http: aiohttp.ClientSession,
        webhook_name: str = "General Webhook",
    ) -> None:
        self._client = client
        self._http = http
        self._webhook_name = webhook_name

    def _webhook(self, credentials: WebhookCredentials) -> discord.Webhook:
        return discord.Webhook.partial(
            credentials.webhook_id, credentials.token, client=self._client
        )

    async def fetch_channel(self, channel_id: int) -> discord.abc.GuildChannel:
        channel = self._client.get_channel(channel_id)
        if channel is None:
            with translate_errors(f"fetch channel {channel_id}"):
                channel = await self._client.fetch_channel(channel_id)
        if not isinstance(channel, discord.abc.GuildChannel):
            raise PlatformError(
                PlatformErrorKind.NOT_FOUND, f"channel {channel_id} is not a guild channel"
            )
        return channel

    async def create_webhook(self, channel_id: int) -> WebhookCredentials:
        channel = await self.fetch_channel(channel_id)
        if not isinstance(channel, (discord.TextChannel, discord.VoiceChannel, discord.ForumChannel)):
            raise PlatformError(
                PlatformErrorKind.FORBIDDEN, f"channel {channel_id} does not support webhooks"
            )
        with translate_errors(f"create webhook in {channel_id}"):
            webhook = await channel.create_webhook(
                name=self._webhook_name, reason="Reusable webhook for anonymized messages"
            )
        if webhook.token is None:
            raise PlatformError(PlatformErrorKind.TRANSIENT, "created webhook has no token")
        return WebhookCredentials(webhook.id, webhook.token)

    async def delete_webhook(self, credentials: WebhookCredentials) -> None:
        with translate_errors(f"delete webhook {credentials.webhook_id}"):
            await self._webhook(credentials).delete(reason="Webhook rotation")

    async def send_via_webhook(
        self,
        credentials: WebhookCredentials,
        *,
        content: str,
        username: str,
        avatar_url: str | None,
        attachment: AttachmentData | None = None,
    ) -> int:
        files: list[discord.File] = []
        if attachment is not None:
            files.append(discord.File(io.BytesIO(attachment.data), filename=attachment.filename))

        with translate_errors(f"send via webhook {credentials.webhook_id}"):
            message = await self._webhook(credentials).send(
                content=content or discord.utils.MISSING,
                username=username,
                avatar_url=avatar_url or discord.utils.MISSING,
                files=files or discord.utils.MISSING,
                allowed_mentions=discord.AllowedMentions.none(),
                wait=True,
            )
        return message.id

    async def edit_via_webhook(
        self, credentials: WebhookCredentials, message_id: int, content: str
    ) -> None:
        with translate_errors(f"edit message {message_id}"):
            await self._webhook(credentials).edit_message(
                message_id,
                content=content,
                allowed_mentions=discord.AllowedMentions.none(),
            )

    async def delete_via_webhook(self, credentials: WebhookCredentials, message_id: int) -> None:
        with translate_errors(f"delete relayed message {message_id}"):
            await self._webhook(credentials).delete_message(message_id)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        with translate_errors(f"delete message {message_id}"):
            channel = self._client.get_partial_messageable(channel_id)
            await channel.get_partial_message(message_id).delete()

    async def send_direct_message(self, user_id: int, text: str) -> None:
        with translate_errors(f"DM user {user_id}"):
            user = self._client.get_user(user_id) or await self._client.fetch_user(user_id)
            await user.send(text)

    async def fetch_attachment(self, attachment: AttachmentRef) -> AttachmentData:
        with translate_errors(f"download {attachment.filename}"):
            async with self._http.get(attachment.url, timeout=ATTACHMENT_TIMEOUT) as resp:
                resp.raise_for_status()
                data = await resp.read()
        logger.debug("Fetched attachment %s (%d bytes)", attachment.filename, len(data))
        return AttachmentData(attachment.filename, data)
