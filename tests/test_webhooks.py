"""Tests for webhook resolution, recovery and rotation."""

from __future__ import annotations

import asyncio

import pytest

from anonbot.db.repositories.webhook_repo import WebhookRepo
from anonbot.services.crypto import ENCRYPTED_TOKEN_PREFIX
from anonbot.services.platform import PlatformError
from anonbot.utils.enums import PlatformErrorKind, RotationResult

CHANNEL = 500


async def _stored(session_factory, channel_id=CHANNEL):
    async with session_factory() as session:
        return await WebhookRepo(session).get(channel_id)


class TestResolve:
    @pytest.mark.asyncio
    async def test_creates_and_stores_encrypted(self, webhooks, platform, session_factory):
        creds = await webhooks.resolve(CHANNEL)
        assert platform.webhooks_in(CHANNEL) == [creds.webhook_id]

        row = await _stored(session_factory)
        assert row.webhook_id == creds.webhook_id
        assert row.webhook_token.startswith(ENCRYPTED_TOKEN_PREFIX)
        assert creds.token not in row.webhook_token

    @pytest.mark.asyncio
    async def test_second_resolve_reuses_webhook(self, webhooks, platform):
        first = await webhooks.resolve(CHANNEL)
        second = await webhooks.resolve(CHANNEL)
        assert first == second
        assert platform.calls.count("create_webhook") == 1

    @pytest.mark.asyncio
    async def test_concurrent_resolves_create_one_webhook(self, webhooks, platform):
        results = await asyncio.gather(*(webhooks.resolve(CHANNEL) for _ in range(5)))
        assert len({c.webhook_id for c in results}) == 1
        assert len(platform.webhooks_in(CHANNEL)) == 1

    @pytest.mark.asyncio
    async def test_corrupt_token_is_replaced(self, webhooks, platform, session_factory):
        async with session_factory() as session:
            await WebhookRepo(session).insert(CHANNEL, 1, ENCRYPTED_TOKEN_PREFIX + "garbage")

        creds = await webhooks.resolve(CHANNEL)

        assert creds.webhook_id != 1
        row = await _stored(session_factory)
        assert row.webhook_id == creds.webhook_id

    @pytest.mark.asyncio
    async def test_legacy_plaintext_is_migrated(self, webhooks, platform, session_factory):
        legacy = await platform.create_webhook(CHANNEL)
        async with session_factory() as session:
            await WebhookRepo(session).insert(CHANNEL, legacy.webhook_id, legacy.token)

        creds = await webhooks.resolve(CHANNEL)

        assert creds == legacy
        row = await _stored(session_factory)
        assert row.webhook_token.startswith(ENCRYPTED_TOKEN_PREFIX)
        assert webhooks.decode_token(row.webhook_token) == legacy.token

    @pytest.mark.asyncio
    async def test_create_failure_propagates(self, webhooks, platform, session_factory):
        platform.fail_create = PlatformError(PlatformErrorKind.FORBIDDEN, "Missing Permissions")
        with pytest.raises(PlatformError) as exc:
            await webhooks.resolve(CHANNEL)
        assert exc.value.kind is PlatformErrorKind.FORBIDDEN
        assert await _stored(session_factory) is None


class TestExecute:
    @pytest.mark.asyncio
    async def test_deleted_webhook_is_recreated_and_retried(
        self, webhooks, platform, session_factory
    ):
        stale = await webhooks.resolve(CHANNEL)
        del platform.webhooks[stale.webhook_id]  # removed by a server admin

        async def send(creds):
            return await platform.send_via_webhook(
                creds, content="hi", username="A", avatar_url=None
            )

        creds, message_id = await webhooks.execute(CHANNEL, send)

        assert creds.webhook_id != stale.webhook_id
        assert platform.messages[message_id].webhook_id == creds.webhook_id
        row = await _stored(session_factory)
        assert row.webhook_id == creds.webhook_id

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_not_found(self, webhooks, platform):
        attempts = []

        async def always_gone(creds):
            attempts.append(creds.webhook_id)
            raise PlatformError(PlatformErrorKind.NOT_FOUND)

        with pytest.raises(PlatformError):
            await webhooks.execute(CHANNEL, always_gone)
        assert len(attempts) == 2
        assert attempts[0] != attempts[1]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, webhooks, platform):
        attempts = []

        async def forbidden(creds):
            attempts.append(creds.webhook_id)
            raise PlatformError(PlatformErrorKind.FORBIDDEN)

        with pytest.raises(PlatformError):
            await webhooks.execute(CHANNEL, forbidden)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_discard_keeps_newer_webhook(self, webhooks, session_factory):
        current = await webhooks.resolve(CHANNEL)
        await webhooks.discard(CHANNEL, current.webhook_id + 1)
        assert (await _stored(session_factory)).webhook_id == current.webhook_id


class TestRotate:
    @pytest.mark.asyncio
    async def test_replaces_webhook(self, webhooks, platform, session_factory):
        old = await webhooks.resolve(CHANNEL)

        assert await webhooks.rotate(CHANNEL) is RotationResult.ROTATED

        row = await _stored(session_factory)
        assert row.webhook_id != old.webhook_id
        assert old.webhook_id not in platform.webhooks
        assert platform.webhooks_in(CHANNEL) == [row.webhook_id]

    @pytest.mark.asyncio
    async def test_unreachable_channel_is_removed(self, webhooks, platform, session_factory):
        await webhooks.resolve(CHANNEL)
        platform.unreachable_channels.add(CHANNEL)

        assert await webhooks.rotate(CHANNEL) is RotationResult.REMOVED
        assert await _stored(session_factory) is None

    @pytest.mark.asyncio
    async def test_undecryptable_row_is_removed(self, webhooks, session_factory):
        async with session_factory() as session:
            await WebhookRepo(session).insert(CHANNEL, 1, ENCRYPTED_TOKEN_PREFIX + "garbage")

        assert await webhooks.rotate(CHANNEL) is RotationResult.REMOVED
        assert await _stored(session_factory) is None

    @pytest.mark.asyncio
    async def test_failed_replacement_is_removed(self, webhooks, platform, session_factory):
        await webhooks.resolve(CHANNEL)
        platform.fail_create = PlatformError(PlatformErrorKind.FORBIDDEN)

        assert await webhooks.rotate(CHANNEL) is RotationResult.REMOVED
        assert await _stored(session_factory) is None

    @pytest.mark.asyncio
    async def test_old_webhook_already_gone_still_rotates(self, webhooks, platform):
        old = await webhooks.resolve(CHANNEL)
        del platform.webhooks[old.webhook_id]

        assert await webhooks.rotate(CHANNEL) is RotationResult.ROTATED

    @pytest.mark.asyncio
    async def test_missing_row(self, webhooks):
        assert await webhooks.rotate(CHANNEL) is RotationResult.REMOVED

    @pytest.mark.asyncio
    async def test_resolve_after_removal_creates_lazily(self, webhooks, platform):
        await webhooks.resolve(CHANNEL)
        platform.unreachable_channels.add(CHANNEL)
        await webhooks.rotate(CHANNEL)
        platform.unreachable_channels.clear()

        creds = await webhooks.resolve(CHANNEL)
        assert creds.webhook_id in platform.webhooks
