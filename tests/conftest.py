"""Shared fixtures for anonbot tests."""

from __future__ import annotations

import itertools
import os
from dataclasses import dataclass, field
from typing import Any

# Ensure required settings exist before any anonbot module triggers Settings validation
os.environ.setdefault("BOT_TOKEN", "TEST_TOKEN")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import anonbot.models  # noqa: F401
from anonbot.db.base import Base
from anonbot.services.capture import CapturedMessage
from anonbot.services.crypto import TokenCipher
from anonbot.services.platform import (
    AttachmentData,
    AttachmentRef,
    PlatformError,
    WebhookCredentials,
)
from anonbot.services.rate_limiter import SlidingWindowLimiter
from anonbot.services.relay import RelayPipeline
from anonbot.services.webhooks import WebhookManager
from anonbot.utils.enums import PlatformErrorKind

RELAY_CHANNEL = 500
GUILD = 42


@dataclass
class RelayedMessage:
    channel_id: int
    webhook_id: int
    content: str
    username: str
    avatar_url: str | None
    attachment: AttachmentData | None


@dataclass
class FakePlatform:
    """In-memory stand-in for the chat platform."""

    webhooks: dict[int, tuple[int, str]] = field(default_factory=dict)  # id → (channel, token)
    messages: dict[int, RelayedMessage] = field(default_factory=dict)
    deleted_originals: list[tuple[int, int]] = field(default_factory=list)
    dms: list[tuple[int, str]] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    unreachable_channels: set[int] = field(default_factory=set)
    fail_send: PlatformError | None = None
    fail_create: PlatformError | None = None
    fail_edit: PlatformError | None = None
    fail_delete_original: PlatformError | None = None
    fail_dm: PlatformError | None = None
    fail_fetch: PlatformError | None = None
    _ids: Any = field(default_factory=lambda: itertools.count(10_000))

    def _check(self, credentials: WebhookCredentials) -> int:
        entry = self.webhooks.get(credentials.webhook_id)
        if entry is None or entry[1] != credentials.token:
            raise PlatformError(PlatformErrorKind.NOT_FOUND, "Unknown Webhook")
        return entry[0]

    def webhooks_in(self, channel_id: int) -> list[int]:
        return [wid for wid, (cid, _) in self.webhooks.items() if cid == channel_id]

    async def fetch_channel(self, channel_id: int) -> int:
        self.calls.append("fetch_channel")
        if channel_id in self.unreachable_channels:
            raise PlatformError(PlatformErrorKind.NOT_FOUND, "Unknown Channel")
        return channel_id

    async def create_webhook(self, channel_id: int) -> WebhookCredentials:
        self.calls.append("create_webhook")
        if channel_id in self.unreachable_channels:
            raise PlatformError(PlatformErrorKind.NOT_FOUND, "Unknown Channel")
        if self.fail_create is not None:
            raise self.fail_create
        webhook_id = next(self._ids)
        token = f"token-{webhook_id}"
        self.webhooks[webhook_id] = (channel_id, token)
        return WebhookCredentials(webhook_id, token)

    async def delete_webhook(self, credentials: WebhookCredentials) -> None:
        self.calls.append("delete_webhook")
        self._check(credentials)
        del self.webhooks[credentials.webhook_id]

    async def send_via_webhook(
        self,
        credentials: WebhookCredentials,
        *,
        content: str,
        username: str,
        avatar_url: str | None,
        attachment: AttachmentData | None = None,
    ) -> int:
        self.calls.append("send")
        if self.fail_send is not None:
            raise self.fail_send
        channel_id = self._check(credentials)
        message_id = next(self._ids)
        self.messages[message_id] = RelayedMessage(
            channel_id, credentials.webhook_id, content, username, avatar_url, attachment
        )
        return message_id

    async def fetch_attachment(self, attachment: AttachmentRef) -> AttachmentData:
        self.calls.append("fetch_attachment")
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return AttachmentData(attachment.filename, attachment.url.encode())

    async def edit_via_webhook(
        self, credentials: WebhookCredentials, message_id: int, content: str
    ) -> None:
        self.calls.append("edit")
        if self.fail_edit is not None:
            raise self.fail_edit
        self._check(credentials)
        message = self.messages.get(message_id)
        if message is None or message.webhook_id != credentials.webhook_id:
            raise PlatformError(PlatformErrorKind.NOT_FOUND, "Unknown Message")
        message.content = content

    async def delete_via_webhook(self, credentials: WebhookCredentials, message_id: int) -> None:
        self.calls.append("delete_relayed")
        self._check(credentials)
        if self.messages.pop(message_id, None) is None:
            raise PlatformError(PlatformErrorKind.NOT_FOUND, "Unknown Message")

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        self.calls.append("delete_original")
        if self.fail_delete_original is not None:
            raise self.fail_delete_original
        self.deleted_originals.append((channel_id, message_id))

    async def send_direct_message(self, user_id: int, text: str) -> None:
        self.calls.append("dm")
        if self.fail_dm is not None:
            raise self.fail_dm
        self.dms.append((user_id, text))


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database with all tables."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher("test-secret")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> SlidingWindowLimiter:
    return SlidingWindowLimiter(max_events=3, window=60.0, clock=clock)


@pytest.fixture
def webhooks(platform, cipher, session_factory) -> WebhookManager:
    return WebhookManager(platform, cipher, session_factory)


@pytest.fixture
def pipeline(platform, webhooks, limiter, session_factory) -> RelayPipeline:
    return RelayPipeline(
        platform,
        webhooks,
        limiter,
        session_factory,
        allowed_channel_ids=frozenset({RELAY_CHANNEL}),
    )


@pytest.fixture
def make_captured():
    """Factory for CapturedMessage snapshots."""
    ids = itertools.count(1)

    def _make(
        content: str = "hello",
        message_id: int | None = None,
        channel_id: int = RELAY_CHANNEL,
        author_id: int = 7,
        author_is_bot: bool = False,
        is_admin: bool = False,
        attachment: AttachmentRef | None = None,
        display_name: str = "Alice",
        avatar_url: str | None = "https://cdn.example/avatars/7.png",
        slash: bool = False,
    ) -> CapturedMessage:
        return CapturedMessage(
            message_id=None if slash else (message_id or next(ids)),
            channel_id=channel_id,
            guild_id=GUILD,
            author_id=author_id,
            author_is_bot=author_is_bot,
            is_admin=is_admin,
            display_name=display_name,
            avatar_url=avatar_url,
            content=content,
            attachment=attachment,
        )

    return _make
