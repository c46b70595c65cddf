"""ORM models; importing this package registers every table on ``Base.metadata``."""

from anonbot.models.bot_state import BotState
from anonbot.models.message_mapping import MessageMapping
from anonbot.models.relay_channel import RelayChannel
from anonbot.models.webhook import ChannelWebhook

__all__ = ["BotState", "ChannelWebhook", "MessageMapping", "RelayChannel"]
