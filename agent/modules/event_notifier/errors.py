"""Errors raised inside the event notifier."""

from __future__ import annotations


class NotifierError(Exception):
    """Base class for event notifier errors."""


class DeliveryError(NotifierError):
    """The transport rejected, or timed out on, a message to one recipient."""

    def __init__(self, recipient: str, reason: str):
        super().__init__(f"delivery to {recipient} failed: {reason}")
        self.recipient = recipient
        self.reason = reason


class StoreError(NotifierError):
    """The event/user store could not be read or written."""


class ConfigurationError(NotifierError):
    """The notifier cannot run with the current settings."""
