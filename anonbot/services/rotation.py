"""Webhook rotation – replace every channel webhook on a restart-safe schedule.

The time of the last completed pass is persisted (the *watermark*); the next
pass is due at watermark + interval, so restarting the process neither resets
nor doubles the cadence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from anonbot.db.repositories.state_repo import StateRepo
from anonbot.services.webhooks import WebhookManager
from anonbot.utils.enums import RotationResult

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_INTERVAL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_rotation_at(watermark: datetime | None, interval: timedelta, now: datetime) -> datetime:
    """When the next pass is due; *now* if there was never one."""
    if watermark is None:
        return now
    return watermark + interval


class RotationScheduler:
    """Single background task owning webhook rotation."""

    def __init__(
        self,
        webhooks: WebhookManager,
        session_factory: async_sessionmaker[AsyncSession],
        interval: timedelta = DEFAULT_ROTATION_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._webhooks = webhooks
        self._session_factory = session_factory
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._running = False
        self._wake = asyncio.Event()
        self._in_pass = False
        # In-memory floor for the schedule when the watermark could not be saved
        self._last_attempt: datetime | None = None
        self.next_due: datetime | None = None

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="webhook-rotation")
        logger.info("Webhook rotation started (every %s).", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Webhook rotation stopped.")

    def trigger(self) -> bool:
        """Run a pass now instead of waiting for the schedule.

        Returns False, and does nothing, while a pass is already running.
        """
        if self._in_pass:
            return False
        self._wake.set()
        return True

    async def get_watermark(self) -> datetime | None:
        async with self._session_factory() as session:
            return await StateRepo(session).get_watermark()

    async def due_at(self) -> datetime:
        due = next_rotation_at(await self.get_watermark(), self._interval, self._clock())
        if self._last_attempt is not None:
            due = max(due, self._last_attempt + self._interval)
        return due

    async def _loop(self) -> None:
        while self._running:
            try:
                self.next_due = await self.due_at()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Could not read rotation watermark: %s", e)
                base = self._last_attempt or self._clock()
                self.next_due = base + self._interval

            delay = (self.next_due - self._clock()).total_seconds()
            if delay > 0:
                logger.info("Next webhook rotation at %s", self.next_due.isoformat())
                await self._sleep(delay)
                if not self._running:
                    break

            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Webhook rotation error: %s", e)
            finally:
                self._last_attempt = self._clock()

    async def _sleep(self, delay: float) -> None:
        """Wait *delay* seconds, or less if ``trigger`` is called."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
            logger.info("Webhook rotation triggered manually.")
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def run_once(self) -> dict[RotationResult, int]:
        """Rotate every stored webhook, then advance the watermark.

        Channels are processed one at a time; a failure in one channel never
        aborts the pass. The watermark advances even if every channel failed.
        """
        logger.info("Starting webhook rotation…")
        counts = {RotationResult.ROTATED: 0, RotationResult.REMOVED: 0}
        self._in_pass = True
        self._wake.clear()
        try:
            channel_ids = await self._webhooks.list_channel_ids()
            if not channel_ids:
                logger.info("No webhooks to rotate.")

            for channel_id in channel_ids:
                try:
                    result = await self._webhooks.rotate(channel_id)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Rotation of channel %d failed: %s", channel_id, e)
                    continue
                counts[result] += 1

            async with self._session_factory() as session:
                await StateRepo(session).advance_watermark(self._clock())
        finally:
            self._in_pass = False

        logger.info(
            "Webhook rotation finished. %d rotated, %d removed.",
            counts[RotationResult.ROTATED],
            counts[RotationResult.REMOVED],
        )
        return counts
