"""Webhook repository – CRUD for the per-channel webhooks table."""

from __future__ import annotations

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from anonbot.models.webhook import ChannelWebhook


class WebhookRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def get(self, channel_id: int) -> ChannelWebhook | None:
        """Return the stored webhook row for *channel_id*, if any."""
        return await self._s.get(ChannelWebhook, channel_id)

    async def insert(self, channel_id: int, webhook_id: int, token: str) -> ChannelWebhook:
        row = ChannelWebhook(channel_id=channel_id, webhook_id=webhook_id, webhook_token=token)
        self._s.add(row)
        await self._s.commit()
        return row

    async def replace(self, channel_id: int, webhook_id: int, token: str) -> None:
        """Swap the webhook of an existing row in place (rotation)."""
        await self._s.execute(
            update(ChannelWebhook)
            .where(ChannelWebhook.channel_id == channel_id)
            .values(webhook_id=webhook_id, webhook_token=token)
        )
        await self._s.commit()

    async def update_token(self, channel_id: int, webhook_id: int, token: str) -> bool:
        """Re-encode the stored token, only if the row still holds *webhook_id*."""
        result = await self._s.execute(
            update(ChannelWebhook)
            .where(
                ChannelWebhook.channel_id == channel_id,
                ChannelWebhook.webhook_id == webhook_id,
            )
            .values(webhook_token=token)
        )
        await self._s.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def delete(self, channel_id: int) -> bool:
        result = await self._s.execute(
            delete(ChannelWebhook).where(ChannelWebhook.channel_id == channel_id)
        )
        await self._s.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def delete_if_matches(self, channel_id: int, webhook_id: int) -> bool:
        """Delete the row only while it still points at *webhook_id*.

        A concurrent rotation may already have replaced it; that newer
        webhook must survive.
        """
        result = await self._s.execute(
            delete(ChannelWebhook).where(
                ChannelWebhook.channel_id == channel_id,
                ChannelWebhook.webhook_id == webhook_id,
            )
        )
        await self._s.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def list_all(self) -> list[ChannelWebhook]:
        result = await self._s.execute(
            select(ChannelWebhook).order_by(ChannelWebhook.channel_id)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self._s.execute(select(func.count()).select_from(ChannelWebhook))
        return result.scalar_one()
