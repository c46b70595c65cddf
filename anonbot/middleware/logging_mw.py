"""Logging wrapper – structured timing log per gateway event / command."""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger("anonbot.events")

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _channel_of(args: tuple[Any, ...]) -> int | None:
    """Best-effort channel id from a discord.py event / interaction argument."""
    for arg in args:
        channel_id = getattr(arg, "channel_id", None)
        if isinstance(channel_id, int):
            return channel_id
        channel = getattr(arg, "channel", None)
        if channel is not None and isinstance(getattr(channel, "id", None), int):
            return channel.id
    return None


def log_event(event_type: str) -> Callable[[F], F]:
    """Log each handled event with timing; errors are logged and re-raised."""

    def decorator(handler: F) -> F:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            channel_id = _channel_of(args)
            try:
                result = await handler(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                logger.error(
                    "event=%s channel=%s elapsed=%.1fms error=%s",
                    event_type,
                    channel_id,
                    elapsed,
                    e,
                )
                raise
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug(
                "event=%s channel=%s elapsed=%.1fms",
                event_type,
                channel_id,
                elapsed,
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
