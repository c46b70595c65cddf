"""Relay channel repository – the set of channels enabled for anonymizing."""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from anonbot.models.relay_channel import RelayChannel


class RelayChannelRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def enable(self, channel_id: int, guild_id: int) -> bool:
        """Mark a channel for relaying. Returns False if it already was."""
        if await self._s.get(RelayChannel, channel_id) is not None:
            return False
        self._s.add(RelayChannel(channel_id=channel_id, guild_id=guild_id))
        await self._s.commit()
        return True

    async def disable(self, channel_id: int) -> bool:
        """Stop relaying a channel. Returns False if it was not enabled."""
        result = await self._s.execute(
            delete(RelayChannel).where(RelayChannel.channel_id == channel_id)
        )
        await self._s.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def is_enabled(self, channel_id: int) -> bool:
        result = await self._s.execute(
            select(RelayChannel.channel_id).where(RelayChannel.channel_id == channel_id)
        )
        return result.scalar_one_or_none() is not None

    async def list_for_guild(self, guild_id: int) -> list[RelayChannel]:
        result = await self._s.execute(
            select(RelayChannel)
            .where(RelayChannel.guild_id == guild_id)
            .order_by(RelayChannel.enabled_at)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self._s.execute(select(func.count()).select_from(RelayChannel))
        return result.scalar_one()
