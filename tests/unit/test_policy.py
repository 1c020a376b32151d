"""Tests for the confirmation policy"""
import pytest

from confirmwatch.core.models import BlockHeader, ConfirmationState, ObservationConfig
from confirmwatch.core.policy import is_confirmed, is_timeout_exceeded, is_valid_confirmation


@pytest.fixture
def config():
    return ObservationConfig(required_confirmations=3, max_checks=5)


@pytest.mark.parametrize("confirmations,expected", [(2, False), (3, True), (4, False)])
def test_is_confirmed_exact_equality(config, confirmations, expected):
    assert is_confirmed(ConfirmationState(confirmations=confirmations), config) is expected


@pytest.mark.parametrize("checks,expected", [(4, False), (5, True), (6, False)])
def test_is_timeout_exceeded_exact_equality(config, checks, expected):
    assert is_timeout_exceeded(ConfirmationState(confirmation_checks=checks), config) is expected


def test_valid_confirmation_requires_child_and_taller():
    last = BlockHeader(hash="0xb100", parent_hash="0xb99", number=100)

    assert is_valid_confirmation(last, BlockHeader(hash="0xb101", parent_hash="0xb100", number=101))
    # Same height, reported parent matches: still not taller
    assert not is_valid_confirmation(last, BlockHeader(hash="0xc100", parent_hash="0xb100", number=100))
    # Taller but on another branch
    assert not is_valid_confirmation(last, BlockHeader(hash="0xc101", parent_hash="0xc100", number=101))


def test_valid_confirmation_without_last_block():
    candidate = BlockHeader(hash="0xb1", parent_hash="0xb0", number=1)
    assert is_valid_confirmation(None, candidate) is False


def test_policy_does_not_mutate_state(config):
    state = ConfirmationState(confirmations=3, confirmation_checks=5)
    is_confirmed(state, config)
    is_timeout_exceeded(state, config)
    assert state == ConfirmationState(confirmations=3, confirmation_checks=5)
