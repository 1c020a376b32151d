"""
Provider interfaces the tracker depends on.

ChainProvider           poll-only: receipt and block lookups
SubscriptionProvider    push-capable: adds a new-heads feed
JsonRpcProvider         lookups implemented over any JSON-RPC request()
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from confirmwatch.core.exceptions import BlockNotFoundError
from confirmwatch.core.models import BlockHeader, Receipt


class HeadsSubscription(ABC):
    """Feed of newly announced block headers.

    Iteration yields BlockHeader values and raises SubscriptionError when the
    feed fails. After unsubscribe() iteration ends.
    """

    @abstractmethod
    async def subscribe(self) -> None:
        """Start the feed."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop the feed. Safe to call more than once."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[BlockHeader]:
        ...


class ChainProvider(ABC):
    """Receipt and block lookups used by the tracker."""

    supports_subscriptions: bool = False

    @abstractmethod
    async def get_transaction_receipt(self, transaction_hash: str) -> Optional[Receipt]:
        """Return the receipt, or None while the transaction is not mined."""

    @abstractmethod
    async def get_block_by_hash(self, block_hash: str) -> BlockHeader:
        """Return the block header for block_hash."""

    async def close(self) -> None:
        """Release transport resources."""


class SubscriptionProvider(ChainProvider):
    """Provider that can push new block headers."""

    supports_subscriptions = True

    @abstractmethod
    def new_heads(self) -> HeadsSubscription:
        """Create a fresh, not yet started, new-heads subscription."""


class JsonRpcProvider(ChainProvider):
    """Ethereum-style JSON-RPC lookups on top of request()."""

    @abstractmethod
    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send one JSON-RPC request and return its result."""

    async def get_transaction_receipt(self, transaction_hash: str) -> Optional[Receipt]:
        result = await self.request("eth_getTransactionReceipt", [transaction_hash])
        # Some nodes return a receipt without blockHash for pending transactions
        if not result or not result.get("blockHash"):
            return None
        return Receipt.from_rpc(result)

    async def get_block_by_hash(self, block_hash: str) -> BlockHeader:
        result = await self.request("eth_getBlockByHash", [block_hash, False])
        if not result:
            raise BlockNotFoundError(
                f"Block not found: {block_hash}",
                details={"block_hash": block_hash},
            )
        return BlockHeader.from_rpc(result)
