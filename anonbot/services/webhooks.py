"""Webhook manager – get-or-create the per-channel relay webhook.

Every channel that has ever relayed owns exactly one stored webhook. Stored
tokens that cannot be decrypted, and webhooks the platform reports as gone,
are dropped and replaced instead of blocking the message flow.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from anonbot.db.repositories.webhook_repo import WebhookRepo
from anonbot.models.webhook import ChannelWebhook
from anonbot.services.crypto import DecryptionError, TokenCipher
from anonbot.services.platform import PlatformError, RelayPlatform, WebhookCredentials
from anonbot.utils.enums import PlatformErrorKind, RotationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How many times a stale or corrupt webhook is replaced within one call
MAX_RECOVERIES = 2


class WebhookManager:
    """Resolves, recovers and rotates channel webhooks."""

    def __init__(
        self,
        platform: RelayPlatform,
        cipher: TokenCipher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._platform = platform
        self._cipher = cipher
        self._session_factory = session_factory
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Token encoding (also used for mapping snapshots) ─────────────

    def encode_token(self, token: str) -> str:
        return self._cipher.encrypt(token)

    def decode_token(self, stored: str) -> str:
        return self._cipher.decrypt(stored)

    # ── Resolution ───────────────────────────────────────────────────

    async def resolve(self, channel_id: int) -> WebhookCredentials:
        """Return the live webhook for *channel_id*, creating one if needed.

        Raises ``PlatformError`` if a new webhook cannot be created.
        """
        async with self._locks[channel_id]:
            for _ in range(MAX_RECOVERIES + 1):
                row = await self._load(channel_id)
                if row is None:
                    return await self._create(channel_id)

                try:
                    token = self._cipher.decrypt(row.webhook_token)
                except DecryptionError as e:
                    logger.warning(
                        "Webhook token for channel %d could not be decrypted (%s) – "
                        "removing entry and recreating",
                        channel_id,
                        e,
                    )
                    await self._delete_row(channel_id, row.webhook_id)
                    continue

                credentials = WebhookCredentials(row.webhook_id, token)
                if self._cipher.needs_migration(row.webhook_token):
                    await self._migrate_plaintext(channel_id, credentials)
                return credentials

        raise PlatformError(
            PlatformErrorKind.TRANSIENT,
            f"no usable webhook for channel {channel_id} after {MAX_RECOVERIES} recoveries",
        )

    async def execute(
        self,
        channel_id: int,
        operation: Callable[[WebhookCredentials], Awaitable[T]],
    ) -> tuple[WebhookCredentials, T]:
        """Run *operation* with the channel's webhook.

        If the platform reports the webhook as deleted, the stored entry is
        discarded and the operation is retried once with a fresh webhook.
        Returns the credentials actually used together with the result.
        """
        credentials = await self.resolve(channel_id)
        try:
            return credentials, await operation(credentials)
        except PlatformError as e:
            if not e.not_found:
                raise
            logger.warning(
                "Webhook %d for channel %d no longer exists – recreating",
                credentials.webhook_id,
                channel_id,
            )
            await self.discard(channel_id, credentials.webhook_id)

        credentials = await self.resolve(channel_id)
        return credentials, await operation(credentials)

    async def discard(self, channel_id: int, webhook_id: int) -> None:
        """Forget a webhook known to be dead, unless it was already replaced."""
        async with self._locks[channel_id]:
            await self._delete_row(channel_id, webhook_id)

    # ── Rotation ─────────────────────────────────────────────────────

    async def rotate(self, channel_id: int) -> RotationResult:
        """Replace the channel's webhook with a brand new one.

        Channels that cannot be fetched, undecryptable rows and channels
        where a replacement cannot be created lose their entry; the next
        relay there creates a webhook lazily.
        """
        async with self._locks[channel_id]:
            row = await self._load(channel_id)
            if row is None:
                return RotationResult.REMOVED

            try:
                await self._platform.fetch_channel(channel_id)
            except PlatformError as e:
                logger.warning(
                    "Channel %d unreachable during rotation (%s) – removing entry",
                    channel_id,
                    e.kind.value,
                )
                await self._delete_row(channel_id)
                return RotationResult.REMOVED

            try:
                token = self._cipher.decrypt(row.webhook_token)
            except DecryptionError:
                logger.warning(
                    "Webhook token for channel %d could not be decrypted – removing entry",
                    channel_id,
                )
                await self._delete_row(channel_id)
                return RotationResult.REMOVED

            try:
                await self._platform.delete_webhook(WebhookCredentials(row.webhook_id, token))
            except PlatformError as e:
                logger.debug("Old webhook %d not deleted: %s", row.webhook_id, e)

            try:
                fresh = await self._platform.create_webhook(channel_id)
            except PlatformError as e:
                logger.warning(
                    "Could not create replacement webhook for channel %d (%s) – removing entry",
                    channel_id,
                    e.kind.value,
                )
                await self._delete_row(channel_id)
                return RotationResult.REMOVED

            async with self._session_factory() as session:
                await WebhookRepo(session).replace(
                    channel_id, fresh.webhook_id, self._cipher.encrypt(fresh.token)
                )
            return RotationResult.ROTATED

    async def list_channel_ids(self) -> list[int]:
        async with self._session_factory() as session:
            rows = await WebhookRepo(session).list_all()
        return [row.channel_id for row in rows]

    # ── Internals ────────────────────────────────────────────────────

    async def _load(self, channel_id: int) -> ChannelWebhook | None:
        async with self._session_factory() as session:
            return await WebhookRepo(session).get(channel_id)

    async def _delete_row(self, channel_id: int, webhook_id: int | None = None) -> None:
        async with self._session_factory() as session:
            repo = WebhookRepo(session)
            if webhook_id is None:
                await repo.delete(channel_id)
            else:
                await repo.delete_if_matches(channel_id, webhook_id)

    async def _create(self, channel_id: int) -> WebhookCredentials:
        credentials = await self._platform.create_webhook(channel_id)
        try:
            async with self._session_factory() as session:
                await WebhookRepo(session).insert(
                    channel_id, credentials.webhook_id, self._cipher.encrypt(credentials.token)
                )
        except SQLAlchemyError:
            # Unrecorded webhooks would never be rotated; remove it remotely
            try:
                await self._platform.delete_webhook(credentials)
            except PlatformError as e:
                logger.debug("Orphaned webhook %d not deleted: %s", credentials.webhook_id, e)
            raise
        logger.info("Created webhook %d for channel %d", credentials.webhook_id, channel_id)
        return credentials

    async def _migrate_plaintext(
        self, channel_id: int, credentials: WebhookCredentials
    ) -> None:
        try:
            async with self._session_factory() as session:
                await WebhookRepo(session).update_token(
                    channel_id, credentials.webhook_id, self._cipher.encrypt(credentials.token)
                )
            logger.info("Encrypted legacy plaintext token for channel %d", channel_id)
        except SQLAlchemyError as e:
            logger.warning(
                "Could not re-encrypt webhook token for channel %d: %s", channel_id, e
            )
