"""
Exceptions raised by the confirmation tracker and its transports.
"""

from typing import Any, Optional


class ConfirmWatchError(Exception):
    """Base exception for confirmwatch."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TransportError(ConfirmWatchError):
    """Fetch or subscription call failed."""


class RPCError(TransportError):
    """Node answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.code = code
        self.data = data


class RPCTimeoutError(TransportError):
    """Request did not complete within the configured timeout."""


class SubscriptionError(TransportError):
    """Header feed failed or was closed by the remote side."""


class CircuitBreakerOpenError(TransportError):
    """Transport is failing fast after repeated errors."""


class BlockNotFoundError(ConfirmWatchError):
    """Block lookup by hash returned nothing."""


class ConfirmationTimeoutError(ConfirmWatchError):
    """Check budget exhausted before the transaction got enough confirmations.

    Advisory only: the transaction may still get confirmed.
    """


class ObservationStateError(ConfirmWatchError):
    """Tracker or observation used outside its single-use contract."""


class ConfigError(ConfirmWatchError, ValueError):
    """Invalid configuration value."""


class ObservationError(ConfirmWatchError):
    """Terminal error delivered to an ``async for`` consumer.

    Wraps the ErrorEvent so iterating callers see the same receipt and
    counters a sink-based caller would.
    """

    def __init__(self, event):
        self.event = event
        super().__init__(
            str(event.error),
            details={
                "confirmations": event.confirmations,
                "confirmation_checks": event.confirmation_checks,
            },
        )

    @property
    def error(self) -> BaseException:
        return self.event.error

    @property
    def receipt(self):
        return self.event.receipt

    @property
    def confirmations(self) -> int:
        return self.event.confirmations

    @property
    def confirmation_checks(self) -> int:
        return self.event.confirmation_checks
