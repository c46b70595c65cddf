"""State repository – key/value CRUD for the bot_state table."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from anonbot.models.bot_state import BotState

ROTATION_WATERMARK_KEY = "last_webhook_rotation"


class StateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def get_value(self, key: str) -> str | None:
        """Get a state value by key."""
        result = await self._s.execute(select(BotState.value).where(BotState.key == key))
        return result.scalar_one_or_none()

    async def set_value(self, key: str, value: str) -> None:
        """Upsert a state value."""
        row = await self._s.get(BotState, key)
        if row is None:
            self._s.add(BotState(key=key, value=value))
        else:
            row.value = value
        await self._s.commit()

    async def get_watermark(self) -> datetime | None:
        """Return when the last rotation pass completed (UTC), if ever."""
        raw = await self.get_value(ROTATION_WATERMARK_KEY)
        if raw is None:
            return None
        ts = datetime.fromisoformat(raw)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts

    async def advance_watermark(self, ts: datetime) -> datetime:
        """Store *ts* as the watermark unless an equal or later one exists.

        Returns the watermark now in effect.
        """
        current = await self.get_watermark()
        if current is not None and current >= ts:
            return current
        await self.set_value(ROTATION_WATERMARK_KEY, ts.astimezone(timezone.utc).isoformat())
        return ts
