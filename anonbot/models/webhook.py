"""ChannelWebhook model – one reusable relay webhook per channel."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from anonbot.db.base import Base


class ChannelWebhook(Base):
    __tablename__ = "webhooks"

    channel_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    webhook_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # "enc:" prefixed ciphertext, or a legacy plaintext token
    webhook_token: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ChannelWebhook channel={self.channel_id} webhook={self.webhook_id}>"
