"""RelayChannel model – channels whose messages are anonymized."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from anonbot.db.base import Base


class RelayChannel(Base):
    __tablename__ = "relay_channels"

    channel_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    enabled_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_relay_channels_guild", "guild_id"),)

    def __repr__(self) -> str:
        return f"<RelayChannel {self.channel_id} guild={self.guild_id}>"
