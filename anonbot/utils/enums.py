"""Enums used across the bot."""

from __future__ import annotations

from enum import Enum


class PlatformErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"  # webhook, message or channel no longer exists
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT = "TRANSIENT"


class RelayOutcome(str, Enum):
    IGNORED = "IGNORED"
    RATE_LIMITED = "RATE_LIMITED"
    EMPTY = "EMPTY"
    SENT = "SENT"
    FAILED = "FAILED"


class RotationResult(str, Enum):
    ROTATED = "ROTATED"
    REMOVED = "REMOVED"
