"""
Confirmation counting driven by a fixed-period timer.

Each tick fetches the receipt and the block it points to. The first block is
accepted as is; later blocks only count when they build directly on the last
accepted one and are taller. Anything else is a reorg and is skipped.
"""

import asyncio
from typing import Optional

from confirmwatch.core.models import ConfirmationState, ProgressEvent, Receipt
from confirmwatch.core.policy import is_confirmed, is_timeout_exceeded, is_valid_confirmation
from confirmwatch.monitoring.base_strategy import GuardedSink, ObservationStrategy


class PollStrategy(ObservationStrategy):
    """Observe a transaction by polling every config.poll_interval_ms."""

    def __init__(self, provider, config):
        super().__init__(provider, config)
        self._timer_cleared = asyncio.Event()
        self.last_receipt: Optional[Receipt] = None

    async def _observe(self, transaction_hash: str, sink: GuardedSink) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.poll_interval
        next_tick = loop.time() + interval

        while await self._wait_for_tick(next_tick - loop.time()):
            # Fixed rate; a cycle that overran its period is followed at once
            next_tick = max(next_tick + interval, loop.time())

            try:
                self.state, receipt = await self._poll_once(transaction_hash, self.state, sink)
            except Exception as error:
                self.release_timer()
                sink.emit_error(self._error_event(error, None))
                return

            if receipt is not None:
                self.last_receipt = receipt

            if is_confirmed(self.state, self.config):
                self.release_timer()
                sink.emit_complete()
                return

            self.state = self.state.with_check()

            if is_timeout_exceeded(self.state, self.config):
                self.release_timer()
                sink.emit_error(self._error_event(self._timeout_error(), self.last_receipt))
                return

    async def _poll_once(
        self,
        transaction_hash: str,
        state: ConfirmationState,
        sink: GuardedSink,
    ) -> tuple[ConfirmationState, Optional[Receipt]]:
        receipt = await self.provider.get_transaction_receipt(transaction_hash)
        if receipt is None:
            return state, None

        block = await self.provider.get_block_by_hash(receipt.block_hash)
        last_block = state.last_confirmed_block

        if last_block is None or is_valid_confirmation(last_block, block):
            state = state.with_confirmation(block)
            sink.emit_next(ProgressEvent(receipt=receipt, confirmations=state.confirmations))

        return state, receipt

    async def _wait_for_tick(self, delay: float) -> bool:
        """Sleep until the next tick. False once the timer was cleared."""
        if self._timer_cleared.is_set():
            return False
        try:
            await asyncio.wait_for(self._timer_cleared.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            return True
        return False

    def release_timer(self) -> None:
        self._timer_cleared.set()

    async def release(self) -> None:
        self.release_timer()
