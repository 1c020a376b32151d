"""
confirmwatch - follow a submitted transaction until it has enough
confirmations, over a new-heads subscription or by polling.
"""

from confirmwatch.core import (
    BlockHeader,
    ConfirmationTimeoutError,
    ConfirmWatchError,
    ErrorEvent,
    ObservationConfig,
    ObservationError,
    ProgressEvent,
    Receipt,
    TrackerStatus,
    TransactionTracker,
    TransportError,
)
from confirmwatch.core.http_provider import HttpProvider
from confirmwatch.core.ws_provider import WebsocketProvider

__version__ = "0.1.0"

__all__ = [
    "BlockHeader",
    "ConfirmationTimeoutError",
    "ConfirmWatchError",
    "ErrorEvent",
    "HttpProvider",
    "ObservationConfig",
    "ObservationError",
    "ProgressEvent",
    "Receipt",
    "TrackerStatus",
    "TransactionTracker",
    "TransportError",
    "WebsocketProvider",
]
