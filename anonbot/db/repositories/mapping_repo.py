"""Message mapping repository – lookups for edit/delete mirroring."""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from anonbot.models.message_mapping import MessageMapping


class MappingRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def add(
        self,
        original_message_id: int,
        relayed_message_id: int,
        channel_id: int,
        webhook_id: int,
        webhook_token: str,
    ) -> MessageMapping:
        """Record a confirmed relay. Call only after the send succeeded."""
        row = MessageMapping(
            original_message_id=original_message_id,
            relayed_message_id=relayed_message_id,
            channel_id=channel_id,
            webhook_id=webhook_id,
            webhook_token=webhook_token,
        )
        self._s.add(row)
        await self._s.commit()
        return row

    async def get(self, original_message_id: int) -> MessageMapping | None:
        return await self._s.get(MessageMapping, original_message_id)

    async def delete(self, original_message_id: int) -> bool:
        result = await self._s.execute(
            delete(MessageMapping).where(
                MessageMapping.original_message_id == original_message_id
            )
        )
        await self._s.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def count(self) -> int:
        result = await self._s.execute(select(func.count()).select_from(MessageMapping))
        return result.scalar_one()
