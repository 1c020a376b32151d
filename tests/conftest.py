"""
Pytest fixtures for confirmwatch tests.

Providers here are in-memory fakes: no test touches the network.
"""
import asyncio
from typing import Optional

import pytest

from confirmwatch.core.exceptions import TransportError
from confirmwatch.core.models import BlockHeader, Receipt
from confirmwatch.core.provider import ChainProvider, HeadsSubscription, SubscriptionProvider

TX_HASH = "0x" + "ab" * 32


def make_receipt(block_hash: str = "0xb1", block_number: int = 1) -> Receipt:
    return Receipt(transaction_hash=TX_HASH, block_hash=block_hash, block_number=block_number, status=1)


def make_header(number: int, block_hash: Optional[str] = None, parent_hash: Optional[str] = None) -> BlockHeader:
    return BlockHeader(
        hash=block_hash or f"0xb{number}",
        parent_hash=parent_hash or f"0xb{number - 1}",
        number=number,
    )


class RecordingSink:
    """Sink that records every signal in arrival order."""

    def __init__(self):
        self.events = []
        self.errors = []
        self.completed = 0
        self.signals = []
        self.done = asyncio.Event()

    def on_next(self, event):
        self.events.append(event)
        self.signals.append("next")

    def on_error(self, event):
        self.errors.append(event)
        self.signals.append("error")
        self.done.set()

    def on_complete(self):
        self.completed += 1
        self.signals.append("complete")
        self.done.set()

    @property
    def confirmations(self):
        return [event.confirmations for event in self.events]


class FakeHeadsSubscription(HeadsSubscription):
    """Heads feed driven by the test through push()/fail()/end()."""

    _END = object()

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.subscribed = False
        self.unsubscribe_calls = 0
        self.subscribe_error: Optional[Exception] = None

    async def subscribe(self):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribed = True

    async def unsubscribe(self):
        self.unsubscribe_calls += 1
        self.subscribed = False
        self.queue.put_nowait(self._END)

    def push(self, header: BlockHeader):
        self.queue.put_nowait(header)

    def fail(self, error: Exception):
        self.queue.put_nowait(error)

    def end(self):
        self.queue.put_nowait(self._END)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.queue.get()
            if item is self._END:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class FakePollProvider(ChainProvider):
    """Poll-only provider answering from scripted lists.

    receipts: one entry per get_transaction_receipt call, the last one repeats.
    An entry that is an exception instance is raised.
    blocks: block hash -> BlockHeader, or a list consumed per call.
    """

    supports_subscriptions = False

    def __init__(self, receipts=None, blocks=None):
        self.receipts = list(receipts or [None])
        self.blocks = blocks or {}
        self.receipt_calls = 0
        self.block_calls = []
        self.closed = False

    async def get_transaction_receipt(self, transaction_hash):
        index = min(self.receipt_calls, len(self.receipts) - 1)
        self.receipt_calls += 1
        item = self.receipts[index]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_block_by_hash(self, block_hash):
        self.block_calls.append(block_hash)
        if isinstance(self.blocks, list):
            item = self.blocks.pop(0) if len(self.blocks) > 1 else self.blocks[0]
        else:
            item = self.blocks[block_hash]
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True


class FakePushProvider(SubscriptionProvider):
    """Push-capable provider backed by a FakeHeadsSubscription."""

    def __init__(self, receipts=None):
        self.receipts = list(receipts or [None])
        self.receipt_calls = 0
        self.subscriptions = []
        self.closed = False

    def new_heads(self):
        subscription = FakeHeadsSubscription()
        self.subscriptions.append(subscription)
        return subscription

    @property
    def heads(self) -> FakeHeadsSubscription:
        return self.subscriptions[-1]

    async def get_transaction_receipt(self, transaction_hash):
        index = min(self.receipt_calls, len(self.receipts) - 1)
        self.receipt_calls += 1
        item = self.receipts[index]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_block_by_hash(self, block_hash):
        raise TransportError("push mode never fetches blocks")

    async def close(self):
        self.closed = True


async def settle(rounds: int = 20):
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def receipt():
    return make_receipt()
