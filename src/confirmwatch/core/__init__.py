"""Confirmation tracking core: model, policy, providers and the tracker."""

from confirmwatch.core.exceptions import (
    BlockNotFoundError,
    CircuitBreakerOpenError,
    ConfigError,
    ConfirmationTimeoutError,
    ConfirmWatchError,
    ObservationError,
    ObservationStateError,
    RPCError,
    RPCTimeoutError,
    SubscriptionError,
    TransportError,
)
from confirmwatch.core.models import (
    BlockHeader,
    ConfirmationState,
    ErrorEvent,
    ObservationConfig,
    ProgressEvent,
    Receipt,
)
from confirmwatch.core.provider import (
    ChainProvider,
    HeadsSubscription,
    JsonRpcProvider,
    SubscriptionProvider,
)
from confirmwatch.core.tracker import TrackerStatus, TransactionObservation, TransactionTracker

__all__ = [
    # Model
    "BlockHeader",
    "ConfirmationState",
    "ErrorEvent",
    "ObservationConfig",
    "ProgressEvent",
    "Receipt",
    # Providers
    "ChainProvider",
    "HeadsSubscription",
    "JsonRpcProvider",
    "SubscriptionProvider",
    # Tracker
    "TrackerStatus",
    "TransactionObservation",
    "TransactionTracker",
    # Errors
    "BlockNotFoundError",
    "CircuitBreakerOpenError",
    "ConfigError",
    "ConfirmationTimeoutError",
    "ConfirmWatchError",
    "ObservationError",
    "ObservationStateError",
    "RPCError",
    "RPCTimeoutError",
    "SubscriptionError",
    "TransportError",
]
