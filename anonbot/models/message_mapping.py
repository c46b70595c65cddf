"""MessageMapping model – original→relayed message link for edit/delete mirroring."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from anonbot.db.base import Base


class MessageMapping(Base):
    __tablename__ = "message_mappings"

    original_message_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )
    relayed_message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    webhook_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Snapshot of the token used for the send, encoded like ChannelWebhook.webhook_token
    webhook_token: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<MessageMapping original={self.original_message_id} "
            f"relayed={self.relayed_message_id} channel={self.channel_id}>"
        )
