"""
Data model shared by the confirmation policy, strategies and transports.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional


def quantity_to_int(value: Any) -> Optional[int]:
    """Decode a JSON-RPC quantity ("0x1a" or plain int) to int."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Not a quantity: {value!r}")


@dataclass(frozen=True)
class BlockHeader:
    """Header fields needed for continuity checks."""
    hash: str
    parent_hash: str
    number: int
    timestamp: Optional[int] = None

    @classmethod
    def from_rpc(cls, data: dict) -> "BlockHeader":
        return cls(
            hash=data["hash"],
            parent_hash=data["parentHash"],
            number=quantity_to_int(data["number"]),
            timestamp=quantity_to_int(data.get("timestamp")),
        )

    def is_child_of(self, other: "BlockHeader") -> bool:
        return self.parent_hash == other.hash


@dataclass(frozen=True)
class Receipt:
    """Mined transaction receipt."""
    transaction_hash: str
    block_hash: str
    block_number: Optional[int] = None
    status: Optional[int] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_rpc(cls, data: dict) -> "Receipt":
        return cls(
            transaction_hash=data.get("transactionHash", ""),
            block_hash=data["blockHash"],
            block_number=quantity_to_int(data.get("blockNumber")),
            status=quantity_to_int(data.get("status")),
            raw=data,
        )


@dataclass(frozen=True)
class ObservationConfig:
    """Immutable tracker configuration.

    max_checks is a budget of observation cycles, not wall-clock time.
    """
    required_confirmations: int = 24
    max_checks: int = 50
    poll_interval_ms: int = 1000

    def __post_init__(self):
        for name in ("required_confirmations", "max_checks", "poll_interval_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

    @property
    def poll_interval(self) -> float:
        """Poll period in seconds."""
        return self.poll_interval_ms / 1000


@dataclass(frozen=True)
class ConfirmationState:
    """Counters for one observation. Each cycle returns a new value."""
    confirmations: int = 0
    confirmation_checks: int = 0
    seen_block_numbers: frozenset = frozenset()
    last_confirmed_block: Optional[BlockHeader] = None

    def with_confirmation(self, block: Optional[BlockHeader] = None) -> "ConfirmationState":
        if block is None:
            return replace(self, confirmations=self.confirmations + 1)
        return replace(
            self,
            confirmations=self.confirmations + 1,
            last_confirmed_block=block,
        )

    def with_check(self) -> "ConfirmationState":
        return replace(self, confirmation_checks=self.confirmation_checks + 1)

    def with_seen_block(self, number: int) -> "ConfirmationState":
        return replace(self, seen_block_numbers=self.seen_block_numbers | {number})

    def has_seen(self, number: int) -> bool:
        return number in self.seen_block_numbers


@dataclass(frozen=True)
class ProgressEvent:
    receipt: Receipt
    confirmations: int


@dataclass(frozen=True)
class ErrorEvent:
    error: BaseException
    receipt: Optional[Receipt]
    confirmations: int
    confirmation_checks: int
