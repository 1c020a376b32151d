"""
Shared plumbing for the observation strategies.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol

from confirmwatch.core.exceptions import ConfirmationTimeoutError
from confirmwatch.core.models import (
    ConfirmationState,
    ErrorEvent,
    ObservationConfig,
    ProgressEvent,
    Receipt,
)
from confirmwatch.core.provider import ChainProvider
from confirmwatch.utils.logger import get_logger

logger = get_logger(__name__)

TIMEOUT_MESSAGE = (
    "Timeout exceeded during the transaction confirmation process. "
    "Be aware the transaction could still get confirmed!"
)


class ObservationSink(Protocol):
    """Receiver of one observation's events."""

    def on_next(self, event: ProgressEvent) -> None: ...

    def on_error(self, event: ErrorEvent) -> None: ...

    def on_complete(self) -> None: ...


class GuardedSink:
    """Wraps a caller's sink.

    Delivers at most one terminal signal and nothing at all once closed,
    so a cycle still in flight after stop() cannot reach the caller.
    Exceptions raised by the caller's callbacks are logged, not fed back
    into the observation.
    """

    def __init__(
        self,
        sink: ObservationSink,
        on_terminal: Optional[Callable[[Optional[ErrorEvent]], None]] = None,
    ):
        self._sink = sink
        self._on_terminal = on_terminal
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def emit_next(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._deliver(self._sink.on_next, event)

    def emit_error(self, event: ErrorEvent) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_terminal:
            self._on_terminal(event)
        self._deliver(self._sink.on_error, event)

    def emit_complete(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_terminal:
            self._on_terminal(None)
        self._deliver(self._sink.on_complete)

    def _deliver(self, callback, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Sink callback {getattr(callback, '__name__', callback)} failed: {e}")


class ObservationStrategy(ABC):
    """One way of driving observation cycles for a single transaction.

    Cycles run strictly one after another inside run(); each takes the
    committed ConfirmationState and returns the next one.
    """

    def __init__(self, provider: ChainProvider, config: ObservationConfig):
        self.provider = provider
        self.config = config
        self.state = ConfirmationState()

    async def run(self, transaction_hash: str, sink: GuardedSink) -> None:
        try:
            await self._observe(transaction_hash, sink)
        finally:
            await self.release()

    @abstractmethod
    async def _observe(self, transaction_hash: str, sink: GuardedSink) -> None:
        """Run cycles until a terminal signal was emitted or release() ran."""

    @abstractmethod
    async def release(self) -> None:
        """Give up the subscription or timer. Idempotent."""

    def _error_event(self, error: BaseException, receipt: Optional[Receipt]) -> ErrorEvent:
        return ErrorEvent(
            error=error,
            receipt=receipt,
            confirmations=self.state.confirmations,
            confirmation_checks=self.state.confirmation_checks,
        )

    def _timeout_error(self) -> ConfirmationTimeoutError:
        return ConfirmationTimeoutError(
            TIMEOUT_MESSAGE,
            details={
                "confirmations": self.state.confirmations,
                "confirmation_checks": self.state.confirmation_checks,
                "max_checks": self.config.max_checks,
            },
        )
