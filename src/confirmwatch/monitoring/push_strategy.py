"""
Confirmation counting driven by a new-heads subscription.

Every announced block height is processed once: the receipt is fetched and,
if the transaction is mined, counts as one more confirmation. No continuity
check is done here; the subscription source is trusted to follow its own
canonical chain.
"""

from typing import Optional

from confirmwatch.core.exceptions import SubscriptionError
from confirmwatch.core.models import BlockHeader, ConfirmationState, ProgressEvent, Receipt
from confirmwatch.core.policy import is_confirmed, is_timeout_exceeded
from confirmwatch.core.provider import HeadsSubscription, SubscriptionProvider
from confirmwatch.monitoring.base_strategy import GuardedSink, ObservationStrategy


class PushStrategy(ObservationStrategy):
    """Observe a transaction through provider.new_heads()."""

    provider: SubscriptionProvider

    def __init__(self, provider: SubscriptionProvider, config):
        super().__init__(provider, config)
        self._subscription: Optional[HeadsSubscription] = None
        self._released = False

    async def _observe(self, transaction_hash: str, sink: GuardedSink) -> None:
        if self._released:
            return

        try:
            self._subscription = self.provider.new_heads()
            await self._subscription.subscribe()
            async for header in self._subscription:
                if self.state.has_seen(header.number):
                    continue

                self.state, receipt = await self._process_head(
                    transaction_hash, header, self.state, sink
                )

                if is_confirmed(self.state, self.config):
                    sink.emit_complete()
                    await self.release()
                    return

                if is_timeout_exceeded(self.state, self.config):
                    sink.emit_error(self._error_event(self._timeout_error(), receipt))
                    await self.release()
                    return
        except Exception as error:
            sink.emit_error(self._error_event(error, None))
            return

        if not self._released:
            sink.emit_error(self._error_event(
                SubscriptionError("Header feed ended before the transaction was confirmed"),
                None,
            ))

    async def _process_head(
        self,
        transaction_hash: str,
        header: BlockHeader,
        state: ConfirmationState,
        sink: GuardedSink,
    ) -> tuple[ConfirmationState, Optional[Receipt]]:
        receipt = await self.provider.get_transaction_receipt(transaction_hash)

        if receipt is not None:
            state = state.with_confirmation()
            sink.emit_next(ProgressEvent(receipt=receipt, confirmations=state.confirmations))
            if is_confirmed(state, self.config):
                return state, receipt

        return state.with_seen_block(header.number).with_check(), receipt

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._subscription is not None:
            await self._subscription.unsubscribe()
