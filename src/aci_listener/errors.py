"""
Error types raised by the session lifecycle.

The supervisor restarts on any of these except DecodeError; the kinds exist
so the logs say what went wrong.
"""

from typing import Optional


class ListenerError(Exception):
    """Base class for all listener errors."""


class TransportError(ListenerError):
    """Network or I/O failure talking to the APIC."""


class AuthenticationError(ListenerError):
    """Login was rejected or the login reply was unusable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SubscriptionError(ListenerError):
    """Subscribe or subscription refresh was rejected or malformed."""


class DecodeError(ListenerError):
    """A single stream message was not a JSON object or array."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
