"""Tests for new-heads driven confirmation counting"""
import asyncio

import pytest

from confirmwatch.core.exceptions import ConfirmationTimeoutError, SubscriptionError, TransportError
from confirmwatch.core.models import ObservationConfig
from confirmwatch.monitoring.base_strategy import TIMEOUT_MESSAGE, GuardedSink
from confirmwatch.monitoring.push_strategy import PushStrategy

from conftest import TX_HASH, FakePushProvider, make_header, settle


async def start(provider, config, sink):
    strategy = PushStrategy(provider, config)
    task = asyncio.create_task(strategy.run(TX_HASH, GuardedSink(sink)))
    await settle()
    return strategy, task


@pytest.mark.asyncio
async def test_confirms_after_required_heads(sink, receipt):
    """Three heads with a mined receipt give 1, 2, 3 then complete"""
    provider = FakePushProvider(receipts=[receipt])
    strategy, task = await start(provider, ObservationConfig(required_confirmations=3, max_checks=10), sink)

    for number in (100, 101, 102, 103):
        provider.heads.push(make_header(number))
    await asyncio.wait_for(task, 1)

    assert sink.confirmations == [1, 2, 3]
    assert provider.receipt_calls == 3
    assert all(event.receipt == receipt for event in sink.events)
    assert sink.signals == ["next", "next", "next", "complete"]
    assert provider.heads.unsubscribe_calls == 1
    assert strategy.state.confirmations == 3


@pytest.mark.asyncio
async def test_duplicate_heights_processed_once(sink):
    provider = FakePushProvider(receipts=[None])
    _, task = await start(provider, ObservationConfig(required_confirmations=3, max_checks=2), sink)

    provider.heads.push(make_header(100))
    provider.heads.push(make_header(100, block_hash="0xother"))
    provider.heads.push(make_header(101))
    await asyncio.wait_for(task, 1)

    assert provider.receipt_calls == 2
    assert sink.errors[0].confirmation_checks == 2


@pytest.mark.asyncio
async def test_timeout_while_not_mined(sink):
    """Budget exhausted with no receipt: timeout error carries no receipt"""
    provider = FakePushProvider(receipts=[None])
    _, task = await start(provider, ObservationConfig(required_confirmations=24, max_checks=3), sink)

    for number in (1, 2, 3):
        provider.heads.push(make_header(number))
    await asyncio.wait_for(task, 1)

    assert sink.events == []
    assert len(sink.errors) == 1
    error_event = sink.errors[0]
    assert isinstance(error_event.error, ConfirmationTimeoutError)
    assert str(error_event.error) == TIMEOUT_MESSAGE
    assert error_event.receipt is None
    assert error_event.confirmations == 0
    assert error_event.confirmation_checks == 3
    assert provider.heads.unsubscribe_calls == 1


@pytest.mark.asyncio
async def test_timeout_carries_latest_receipt(sink, receipt):
    provider = FakePushProvider(receipts=[None, receipt])
    _, task = await start(provider, ObservationConfig(required_confirmations=10, max_checks=2), sink)

    provider.heads.push(make_header(1))
    provider.heads.push(make_header(2))
    await asyncio.wait_for(task, 1)

    assert sink.signals == ["next", "error"]
    assert sink.errors[0].receipt == receipt
    assert sink.errors[0].confirmations == 1


@pytest.mark.asyncio
async def test_fetch_failure_terminates(sink, receipt):
    """Fetch error on the second head: error without receipt, no completion"""
    failure = TransportError("connection reset")
    provider = FakePushProvider(receipts=[receipt, failure])
    _, task = await start(provider, ObservationConfig(required_confirmations=5, max_checks=10), sink)

    provider.heads.push(make_header(1))
    provider.heads.push(make_header(2))
    provider.heads.push(make_header(3))
    await asyncio.wait_for(task, 1)

    assert sink.signals == ["next", "error"]
    assert sink.errors[0].error is failure
    assert sink.errors[0].receipt is None
    assert sink.errors[0].confirmations == 1
    assert provider.receipt_calls == 2
    assert provider.heads.unsubscribe_calls == 1


@pytest.mark.asyncio
async def test_feed_error_terminates(sink):
    provider = FakePushProvider()
    _, task = await start(provider, ObservationConfig(), sink)

    failure = SubscriptionError("socket closed")
    provider.heads.fail(failure)
    await asyncio.wait_for(task, 1)

    assert sink.errors[0].error is failure
    assert sink.completed == 0


@pytest.mark.asyncio
async def test_feed_ending_early_is_an_error(sink):
    provider = FakePushProvider()
    _, task = await start(provider, ObservationConfig(), sink)

    provider.heads.end()
    await asyncio.wait_for(task, 1)

    assert isinstance(sink.errors[0].error, SubscriptionError)


@pytest.mark.asyncio
async def test_subscribe_failure_is_reported(sink):
    provider = FakePushProvider()
    strategy = PushStrategy(provider, ObservationConfig())
    original_new_heads = provider.new_heads

    def failing_new_heads():
        subscription = original_new_heads()
        subscription.subscribe_error = TransportError("eth_subscribe rejected")
        return subscription

    provider.new_heads = failing_new_heads
    await asyncio.wait_for(strategy.run(TX_HASH, GuardedSink(sink)), 1)

    assert str(sink.errors[0].error) == "eth_subscribe rejected"


@pytest.mark.asyncio
async def test_release_before_run_does_not_subscribe(sink):
    provider = FakePushProvider()
    strategy = PushStrategy(provider, ObservationConfig())

    await strategy.release()
    await strategy.run(TX_HASH, GuardedSink(sink))

    assert provider.subscriptions == []
    assert sink.signals == []


@pytest.mark.asyncio
async def test_release_ends_feed_quietly(sink):
    provider = FakePushProvider()
    strategy, task = await start(provider, ObservationConfig(), sink)

    await strategy.release()
    await strategy.release()
    await asyncio.wait_for(task, 1)

    assert provider.heads.unsubscribe_calls == 1
    assert sink.signals == []


@pytest.mark.asyncio
async def test_complete_is_sent_before_unsubscribing(sink, receipt):
    """A failing unsubscribe after confirmation does not turn into an error"""
    provider = FakePushProvider(receipts=[receipt])
    _, task = await start(provider, ObservationConfig(required_confirmations=1), sink)

    async def broken_unsubscribe():
        raise RuntimeError("socket already gone")

    provider.heads.unsubscribe = broken_unsubscribe
    provider.heads.push(make_header(1))
    await asyncio.wait_for(task, 1)

    assert sink.signals == ["next", "complete"]
