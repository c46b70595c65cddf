"""Message capture – snapshot everything the relay needs before the original is deleted."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import discord

from anonbot.services.platform import AttachmentRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapturedMessage:
    """Platform-neutral snapshot of an inbound message."""

    message_id: int | None  # None for slash-command submissions
    channel_id: int
    guild_id: int | None
    author_id: int
    author_is_bot: bool
    is_admin: bool
    display_name: str
    avatar_url: str | None
    content: str = ""
    attachment: AttachmentRef | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content and self.attachment is None


def _is_admin(author: discord.abc.User) -> bool:
    return isinstance(author, discord.Member) and author.guild_permissions.administrator


def _avatar_url(author: discord.abc.User) -> str | None:
    try:
        return author.display_avatar.with_format("png").url
    except (ValueError, discord.DiscordException):
        logger.debug("No PNG avatar for user %d", author.id)
        return None


def _attachment_ref(attachment: discord.Attachment | None) -> AttachmentRef | None:
    if attachment is None:
        return None
    return AttachmentRef(url=attachment.url, filename=attachment.filename)


def capture(message: discord.Message) -> CapturedMessage:
    """Build a snapshot of a gateway message."""
    author = message.author
    return CapturedMessage(
        message_id=message.id,
        channel_id=message.channel.id,
        guild_id=message.guild.id if message.guild else None,
        author_id=author.id,
        author_is_bot=author.bot or message.webhook_id is not None,
        is_admin=_is_admin(author),
        display_name=author.display_name,
        avatar_url=_avatar_url(author),
        content=message.content or "",
        attachment=_attachment_ref(message.attachments[0] if message.attachments else None),
    )


def capture_interaction(
    interaction: discord.Interaction,
    content: str | None,
    attachment: discord.Attachment | None,
) -> CapturedMessage:
    """Build a snapshot of a ``/webhook`` slash-command submission."""
    user = interaction.user
    return CapturedMessage(
        message_id=None,
        channel_id=interaction.channel_id or 0,
        guild_id=interaction.guild_id,
        author_id=user.id,
        author_is_bot=user.bot,
        is_admin=_is_admin(user),
        display_name=user.display_name,
        avatar_url=_avatar_url(user),
        content=content or "",
        attachment=_attachment_ref(attachment),
    )
