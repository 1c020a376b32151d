"""
Confirmation policy: pure decisions over ConfirmationState.
"""

from typing import Optional

from confirmwatch.core.models import BlockHeader, ConfirmationState, ObservationConfig


def is_confirmed(state: ConfirmationState, config: ObservationConfig) -> bool:
    return state.confirmations == config.required_confirmations


def is_valid_confirmation(
    last_confirmed_block: Optional[BlockHeader],
    candidate_block: BlockHeader,
) -> bool:
    """True if candidate extends the last accepted block and is taller.

    Poll mode only: nothing else guarantees that a freshly fetched block
    builds on the one accepted before it.
    """
    if last_confirmed_block is None:
        return False
    return (
        candidate_block.is_child_of(last_confirmed_block)
        and candidate_block.number > last_confirmed_block.number
    )


def is_timeout_exceeded(state: ConfirmationState, config: ObservationConfig) -> bool:
    # Exact equality: every cycle adds one check and the budget is terminal.
    return state.confirmation_checks == config.max_checks
