"""
Transaction confirmation tracker.

Architecture:
1. observe() returns a cold, single-subscriber TransactionObservation
2. On subscription the tracker picks PushStrategy when the provider can
   push new heads, PollStrategy otherwise, and runs it in one task
3. Strategy events go through a GuardedSink to the caller
4. stop() closes the sink, releases the feed/timer and cancels the task

Usage:
    tracker = TransactionTracker(provider, ObservationConfig(required_confirmations=12))

    async for event in tracker.observe(tx_hash):
        print(event.confirmations)

    # or with callbacks
    tracker.observe(tx_hash).subscribe(my_sink)
    ...
    await tracker.stop()
"""

import asyncio
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from confirmwatch.core.exceptions import (
    ConfirmationTimeoutError,
    ObservationError,
    ObservationStateError,
)
from confirmwatch.core.models import (
    ConfirmationState,
    ErrorEvent,
    ObservationConfig,
    ProgressEvent,
)
from confirmwatch.core.provider import ChainProvider
from confirmwatch.monitoring.base_strategy import GuardedSink, ObservationSink, ObservationStrategy
from confirmwatch.monitoring.poll_strategy import PollStrategy
from confirmwatch.monitoring.push_strategy import PushStrategy


class TrackerStatus(Enum):
    CREATED = "created"
    OBSERVING = "observing"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self not in (TrackerStatus.CREATED, TrackerStatus.OBSERVING)


class TransactionObservation:
    """Lazy event stream for one transaction.

    Nothing is fetched until subscribe() is called or the observation is
    iterated. Only one subscriber is allowed.
    """

    def __init__(self, tracker: "TransactionTracker", transaction_hash: str):
        self._tracker = tracker
        self.transaction_hash = transaction_hash
        self._subscribed = False

    def subscribe(self, sink: ObservationSink) -> None:
        self._subscribe(sink)

    def _subscribe(self, sink: ObservationSink, on_stopped: Optional[Callable[[], None]] = None) -> None:
        if self._subscribed:
            raise ObservationStateError(
                "Observation already has a subscriber",
                details={"transaction_hash": self.transaction_hash},
            )
        self._subscribed = True
        self._tracker._start(self.transaction_hash, sink, on_stopped)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribe(_QueueSink(queue), on_stopped=lambda: queue.put_nowait((_STOPPED, None)))

        finished = False
        try:
            while True:
                kind, payload = await queue.get()
                if kind is _NEXT:
                    yield payload
                elif kind is _ERROR:
                    finished = True
                    raise ObservationError(payload) from payload.error
                else:
                    finished = True
                    return
        finally:
            if not finished:
                # Consumer left the loop early
                await self._tracker.stop()


_NEXT = object()
_ERROR = object()
_COMPLETE = object()
_STOPPED = object()


class _QueueSink:
    """Sink that hands events to an async iterator."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def on_next(self, event: ProgressEvent) -> None:
        self._queue.put_nowait((_NEXT, event))

    def on_error(self, event: ErrorEvent) -> None:
        self._queue.put_nowait((_ERROR, event))

    def on_complete(self) -> None:
        self._queue.put_nowait((_COMPLETE, None))


class TransactionTracker:
    """Tracks confirmations of exactly one transaction."""

    def __init__(self, provider: ChainProvider, config: Optional[ObservationConfig] = None):
        self.provider = provider
        self.config = config or ObservationConfig()
        self._status = TrackerStatus.CREATED
        self._observation: Optional[TransactionObservation] = None
        self._strategy: Optional[ObservationStrategy] = None
        self._sink: Optional[GuardedSink] = None
        self._task: Optional[asyncio.Task] = None
        self._on_stopped: Optional[Callable[[], None]] = None

    @property
    def status(self) -> TrackerStatus:
        return self._status

    @property
    def state(self) -> ConfirmationState:
        """Last committed confirmation state."""
        if self._strategy is None:
            return ConfirmationState()
        return self._strategy.state

    @property
    def uses_subscriptions(self) -> bool:
        return bool(self.provider.supports_subscriptions)

    def observe(self, transaction_hash: str) -> TransactionObservation:
        if self._observation is not None:
            raise ObservationStateError(
                "Tracker already observes a transaction",
                details={"transaction_hash": self._observation.transaction_hash},
            )
        self._observation = TransactionObservation(self, transaction_hash)
        return self._observation

    async def wait_for_confirmation(self, transaction_hash: str) -> Optional[ProgressEvent]:
        """Observe until confirmed and return the last progress event.

        Raises ObservationError on timeout or failure. Returns the last event
        seen (possibly None) if the tracker was stopped first.
        """
        last_event = None
        async for event in self.observe(transaction_hash):
            last_event = event
        return last_event

    async def stop(self) -> None:
        """Stop observing. Safe to call repeatedly and after termination."""
        if self._status is TrackerStatus.CREATED:
            self._status = TrackerStatus.STOPPED
            return
        if self._status.is_terminal:
            return

        self._status = TrackerStatus.STOPPED
        self._sink.close()
        await self._strategy.release()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._on_stopped is not None:
            self._on_stopped()

    def _select_strategy(self) -> ObservationStrategy:
        if self.uses_subscriptions:
            return PushStrategy(self.provider, self.config)
        return PollStrategy(self.provider, self.config)

    def _start(
        self,
        transaction_hash: str,
        sink: ObservationSink,
        on_stopped: Optional[Callable[[], None]] = None,
    ) -> None:
        if self._status is not TrackerStatus.CREATED:
            raise ObservationStateError(
                f"Tracker cannot start from status {self._status.value}",
                details={"transaction_hash": transaction_hash},
            )
        self._strategy = self._select_strategy()
        self._sink = GuardedSink(sink, on_terminal=self._on_terminal)
        self._on_stopped = on_stopped
        self._status = TrackerStatus.OBSERVING
        self._task = asyncio.get_running_loop().create_task(
            self._strategy.run(transaction_hash, self._sink)
        )
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Strategies report their own failures; this catches anything that escaped
        if task.cancelled() or task.exception() is None:
            return
        state = self.state
        self._sink.emit_error(ErrorEvent(
            error=task.exception(),
            receipt=None,
            confirmations=state.confirmations,
            confirmation_checks=state.confirmation_checks,
        ))

    def _on_terminal(self, event: Optional[ErrorEvent]) -> None:
        if event is None:
            self._status = TrackerStatus.CONFIRMED
        elif isinstance(event.error, ConfirmationTimeoutError):
            self._status = TrackerStatus.TIMED_OUT
        else:
            self._status = TrackerStatus.FAILED
