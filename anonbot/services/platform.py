"""Chat platform boundary – what the relay core needs from the chat service.

The core only talks to ``RelayPlatform``; ``DiscordPlatform`` (see
``discord_platform``) is the production implementation. Every failure must be
raised as ``PlatformError`` so recovery logic can branch on ``kind`` instead
of platform-specific error codes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from anonbot.utils.enums import PlatformErrorKind


class PlatformError(Exception):
    """A classified failure reported by the chat platform."""

    def __init__(self, kind: PlatformErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind

    @property
    def not_found(self) -> bool:
        return self.kind is PlatformErrorKind.NOT_FOUND


@dataclass(frozen=True)
class WebhookCredentials:
    """Plaintext id + token pair for one remote webhook."""

    webhook_id: int
    token: str

    def __repr__(self) -> str:  # never leak the token into logs
        return f"WebhookCredentials(webhook_id={self.webhook_id})"


@dataclass(frozen=True)
class AttachmentRef:
    url: str
    filename: str


@dataclass(frozen=True)
class AttachmentData:
    """Downloaded attachment bytes, ready to re-upload."""

    filename: str
    data: bytes = field(repr=False)


class RelayPlatform(Protocol):
    async def create_webhook(self, channel_id: int) -> WebhookCredentials: ...

    async def delete_webhook(self, credentials: WebhookCredentials) -> None: ...

    async def fetch_attachment(self, attachment: AttachmentRef) -> AttachmentData:
        """Download an attachment while its URL is still valid."""
        ...

    async def send_via_webhook(
        self,
        credentials: WebhookCredentials,
        *,
        content: str,
        username: str,
        avatar_url: str | None,
        attachment: AttachmentData | None = None,
    ) -> int:
        """Post as the webhook with all mention parsing disabled; return the new message id."""
        ...

    async def edit_via_webhook(
        self, credentials: WebhookCredentials, message_id: int, content: str
    ) -> None: ...

    async def delete_via_webhook(
        self, credentials: WebhookCredentials, message_id: int
    ) -> None: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def fetch_channel(self, channel_id: int) -> object: ...

    async def send_direct_message(self, user_id: int, text: str) -> None: ...
