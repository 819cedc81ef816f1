"""Exception types raised inside botguard."""

from __future__ import annotations


class BotGuardError(Exception):
    """Base class for botguard errors."""


class StoreUnavailable(BotGuardError):
    """The request log or known-actor table could not be read or written."""


class InvalidInput(BotGuardError):
    """Request metadata could not be interpreted."""
