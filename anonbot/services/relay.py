"""Relay pipeline – delete the original, re-post it via the channel webhook, mirror edits/deletes.

Per inbound message the steps are strictly sequential:
gate → fetch attachment → delete original → rate limit → send → record mapping.

The attachment is downloaded first because its CDN URL dies with the
original. Deleting the original is the privacy guarantee and happens before
anything else can fail; the mapping is written only after the send was
confirmed, so an original that never relayed has nothing to mirror.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from anonbot.db.repositories.channel_repo import RelayChannelRepo
from anonbot.db.repositories.mapping_repo import MappingRepo
from anonbot.models.message_mapping import MessageMapping
from anonbot.services.capture import CapturedMessage
from anonbot.services.crypto import DecryptionError
from anonbot.services.platform import (
    AttachmentData,
    PlatformError,
    RelayPlatform,
    WebhookCredentials,
)
from anonbot.services.rate_limiter import SlidingWindowLimiter
from anonbot.services.webhooks import WebhookManager
from anonbot.utils.enums import RelayOutcome
from anonbot.utils.text import truncate

logger = logging.getLogger(__name__)

RATE_LIMIT_NOTICE = (
    "You are sending messages too quickly. Your last message was removed and not relayed."
)

# Originals we deleted ourselves; their gateway delete events are not mirrored
SELF_DELETED_CAPACITY = 2048


class RelayPipeline:
    def __init__(
        self,
        platform: RelayPlatform,
        webhooks: WebhookManager,
        limiter: SlidingWindowLimiter,
        session_factory: async_sessionmaker[AsyncSession],
        allowed_channel_ids: frozenset[int] = frozenset(),
    ) -> None:
        self._platform = platform
        self._webhooks = webhooks
        self._limiter = limiter
        self._session_factory = session_factory
        self._allowed_channel_ids = allowed_channel_ids
        self._self_deleted: OrderedDict[int, None] = OrderedDict()

    async def is_relay_channel(self, channel_id: int) -> bool:
        """Static allow list first, then the relay_channels table."""
        if channel_id in self._allowed_channel_ids:
            return True
        try:
            async with self._session_factory() as session:
                return await RelayChannelRepo(session).is_enabled(channel_id)
        except SQLAlchemyError as e:
            logger.error("Could not check relay state of channel %d: %s", channel_id, e)
            return False

    # ── Message creation ─────────────────────────────────────────────

    async def handle_message(self, msg: CapturedMessage) -> RelayOutcome:
        """Anonymize one gateway message."""
        if msg.author_is_bot or msg.message_id is None:
            return RelayOutcome.IGNORED
        if not await self.is_relay_channel(msg.channel_id):
            return RelayOutcome.IGNORED

        attachment = await self._fetch_attachment(msg)

        if not await self._delete_original(msg.channel_id, msg.message_id):
            # The author removed it first; relaying now would resurrect it
            return RelayOutcome.IGNORED

        if not msg.is_admin and self._limiter.check(msg.author_id):
            await self._notify_rate_limited(msg.author_id)
            return RelayOutcome.RATE_LIMITED

        if msg.is_empty:
            return RelayOutcome.EMPTY
        if not msg.content and attachment is None:
            return RelayOutcome.FAILED

        sent = await self._dispatch(msg, attachment)
        if sent is None:
            return RelayOutcome.FAILED

        credentials, relayed_id = sent
        await self._record_mapping(msg, msg.message_id, credentials, relayed_id)
        return RelayOutcome.SENT

    async def submit(self, msg: CapturedMessage) -> RelayOutcome:
        """Relay a ``/webhook`` submission; nothing is deleted and no mapping is kept."""
        if msg.author_is_bot or not await self.is_relay_channel(msg.channel_id):
            return RelayOutcome.IGNORED
        if msg.is_empty:
            return RelayOutcome.EMPTY
        if not msg.is_admin and self._limiter.check(msg.author_id):
            return RelayOutcome.RATE_LIMITED

        attachment = await self._fetch_attachment(msg)
        if not msg.content and attachment is None:
            return RelayOutcome.FAILED

        sent = await self._dispatch(msg, attachment)
        return RelayOutcome.FAILED if sent is None else RelayOutcome.SENT

    # ── Mirroring ────────────────────────────────────────────────────

    async def handle_edit(self, original_message_id: int, content: str) -> None:
        """Mirror an edit of a relayed original onto its relayed copy."""
        mapping = await self._load_mapping(original_message_id)
        if mapping is None:
            return

        try:
            token = self._webhooks.decode_token(mapping.webhook_token)
        except DecryptionError:
            logger.warning(
                "Mapping for message %d holds an undecryptable token – dropping it",
                original_message_id,
            )
            await self._drop_mapping(original_message_id)
            return

        credentials = WebhookCredentials(mapping.webhook_id, token)
        try:
            await self._platform.edit_via_webhook(
                credentials, mapping.relayed_message_id, truncate(content)
            )
        except PlatformError as e:
            if e.not_found:
                # Webhook rotated away or relayed copy gone: the link is dead for good
                logger.info(
                    "Relayed copy of message %d can no longer be edited – dropping mapping",
                    original_message_id,
                )
                await self._drop_mapping(original_message_id)
            else:
                logger.error(
                    "Failed to mirror edit of message %d: %s", original_message_id, e
                )
            return

        logger.debug(
            "Mirrored edit %d → %d", original_message_id, mapping.relayed_message_id
        )

    async def handle_delete(self, original_message_id: int) -> None:
        """Delete the relayed copy of a deleted original and forget the link."""
        if self._consume_self_deleted(original_message_id):
            return

        mapping = await self._load_mapping(original_message_id)
        if mapping is None:
            return

        try:
            token = self._webhooks.decode_token(mapping.webhook_token)
            await self._platform.delete_via_webhook(
                WebhookCredentials(mapping.webhook_id, token), mapping.relayed_message_id
            )
        except (DecryptionError, PlatformError) as e:
            logger.debug(
                "Relayed copy %d not deleted: %s", mapping.relayed_message_id, e
            )

        await self._drop_mapping(original_message_id)

    # ── Internals ────────────────────────────────────────────────────

    async def _fetch_attachment(self, msg: CapturedMessage) -> AttachmentData | None:
        if msg.attachment is None:
            return None
        try:
            return await self._platform.fetch_attachment(msg.attachment)
        except PlatformError as e:
            logger.error(
                "Could not download attachment %s from user %d: %s",
                msg.attachment.filename,
                msg.author_id,
                e,
            )
            return None

    async def _delete_original(self, channel_id: int, message_id: int) -> bool:
        """Delete the original; False if it was already gone."""
        self._self_deleted[message_id] = None
        while len(self._self_deleted) > SELF_DELETED_CAPACITY:
            self._self_deleted.popitem(last=False)
        try:
            await self._platform.delete_message(channel_id, message_id)
        except PlatformError as e:
            self._self_deleted.pop(message_id, None)
            if e.not_found:
                logger.info(
                    "Original message %d in channel %d vanished before relaying",
                    message_id,
                    channel_id,
                )
                return False
            logger.warning(
                "Could not delete original message %d in channel %d: %s",
                message_id,
                channel_id,
                e,
            )
        return True

    def _consume_self_deleted(self, message_id: int) -> bool:
        try:
            del self._self_deleted[message_id]
        except KeyError:
            return False
        return True

    async def _notify_rate_limited(self, user_id: int) -> None:
        try:
            await self._platform.send_direct_message(user_id, RATE_LIMIT_NOTICE)
        except PlatformError as e:
            logger.debug("Rate limit notice to user %d failed: %s", user_id, e)

    async def _dispatch(
        self, msg: CapturedMessage, attachment: AttachmentData | None
    ) -> tuple[WebhookCredentials, int] | None:
        content = truncate(msg.content) if msg.content else ""

        async def send(credentials: WebhookCredentials) -> int:
            return await self._platform.send_via_webhook(
                credentials,
                content=content,
                username=msg.display_name,
                avatar_url=msg.avatar_url,
                attachment=attachment,
            )

        try:
            return await self._webhooks.execute(msg.channel_id, send)
        except (PlatformError, SQLAlchemyError) as e:
            logger.error(
                "Failed to relay message from user %d in channel %d: %s",
                msg.author_id,
                msg.channel_id,
                e,
            )
            return None

    async def _record_mapping(
        self,
        msg: CapturedMessage,
        original_id: int,
        credentials: WebhookCredentials,
        relayed_id: int,
    ) -> None:
        try:
            async with self._session_factory() as session:
                await MappingRepo(session).add(
                    original_message_id=original_id,
                    relayed_message_id=relayed_id,
                    channel_id=msg.channel_id,
                    webhook_id=credentials.webhook_id,
                    webhook_token=self._webhooks.encode_token(credentials.token),
                )
        except SQLAlchemyError as e:
            logger.error("Failed to record mapping for message %d: %s", original_id, e)
            return
        logger.info(
            "Relayed message %d → %d in channel %d",
            original_id,
            relayed_id,
            msg.channel_id,
        )

    async def _load_mapping(self, original_message_id: int) -> MessageMapping | None:
        try:
            async with self._session_factory() as session:
                return await MappingRepo(session).get(original_message_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load mapping for message %d: %s", original_message_id, e)
            return None

    async def _drop_mapping(self, original_message_id: int) -> None:
        try:
            async with self._session_factory() as session:
                await MappingRepo(session).delete(original_message_id)
        except SQLAlchemyError as e:
            logger.error("Failed to drop mapping for message %d: %s", original_message_id, e)
