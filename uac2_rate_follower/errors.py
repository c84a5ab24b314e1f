"""Exceptions raised by the rate follower."""

from __future__ import annotations


class RateFollowerError(Exception):
    """Base class for rate follower errors."""


class ConfigurationError(RateFollowerError):
    """Raised when startup configuration is unusable (missing ctl, empty command)."""


class ChannelClosedError(RateFollowerError):
    """Raised when an instruction is sent to an executor that has terminated."""

    def __init__(self, direction: str) -> None:
        super().__init__(f"{direction}: instruction channel is closed")
        self.direction = direction


class DebounceCancelError(RateFollowerError):
    """Raised when a debounce wait cannot be cancelled.

    "Nothing to cancel" is not an error; this is only raised when the timer
    itself rejects the request (e.g. it has been closed).
    """


class EventSourceError(RateFollowerError):
    """Raised when the ALSA control event source fails unexpectedly."""
