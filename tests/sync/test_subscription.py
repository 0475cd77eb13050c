"""
Tests for Subscription ordered delivery and cancellation.
"""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from core.sync.events import ChangeEvent, EventBatch
from core.sync.subscription import Subscription


def batch_of(*document_ids: str) -> EventBatch:
    return EventBatch(subscription_id="items", events=[ChangeEvent.added(i, {}) for i in document_ids])


class TestSubscription:

    @pytest.mark.asyncio
    async def test_batches_handled_in_order_one_at_a_time(self):
        handled = []
        running = 0
        overlap = False

        async def handler(batch):
            nonlocal running, overlap
            running += 1
            overlap = overlap or running > 1
            await asyncio.sleep(0)
            handled.append([e.document_id for e in batch.events])
            running -= 1

        subscription = Subscription("items", handler)
        subscription.deliver(batch_of("a"))
        subscription.deliver(batch_of("b", "c"))
        subscription.deliver(batch_of("d"))
        await subscription.drain()

        assert handled == [["a"], ["b", "c"], ["d"]]
        assert not overlap
        assert subscription.batches_delivered == 3

    @pytest.mark.asyncio
    async def test_cancel_invokes_handle_once(self):
        cancel_handle = Mock()
        subscription = Subscription("items", Mock())
        subscription.attach(cancel_handle)

        subscription.cancel()
        subscription.cancel()

        cancel_handle.assert_called_once_with()
        assert not subscription.active

    @pytest.mark.asyncio
    async def test_cancelled_subscription_is_inert(self):
        handled = []

        async def handler(batch):
            handled.append(batch)

        subscription = Subscription("items", handler)
        subscription.attach(Mock())
        subscription.cancel()

        subscription.deliver(batch_of("a"))
        await subscription.drain()

        assert handled == []
        assert subscription.batches_dropped == 1

    @pytest.mark.asyncio
    async def test_cancel_drops_queued_batches(self):
        handled = []

        async def handler(batch):
            handled.append(batch.events[0].document_id)
            subscription.cancel()

        subscription = Subscription("items", handler)
        subscription.deliver(batch_of("a"))
        subscription.deliver(batch_of("b"))
        await subscription.drain()

        assert handled == ["a"]
        assert subscription.batches_dropped == 1

    @pytest.mark.asyncio
    async def test_attach_after_cancel_releases_handle(self):
        subscription = Subscription("items", Mock())
        subscription.cancel()

        cancel_handle = Mock()
        subscription.attach(cancel_handle)

        cancel_handle.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_delivery(self):
        handled = []

        async def handler(batch):
            document_id = batch.events[0].document_id
            if document_id == "bad":
                raise RuntimeError("boom")
            handled.append(document_id)

        subscription = Subscription("items", handler)
        subscription.deliver(batch_of("bad"))
        subscription.deliver(batch_of("good"))
        await subscription.drain()

        assert handled == ["good"]
        assert subscription.active

    @pytest.mark.asyncio
    async def test_cancel_handle_error_is_logged(self):
        subscription = Subscription("items", Mock())
        subscription.attach(Mock(side_effect=RuntimeError("already closed")))

        subscription.cancel()

        assert not subscription.active

    @pytest.mark.asyncio
    async def test_deliver_threadsafe_from_foreign_thread(self):
        handled = asyncio.Event()
        received = []

        async def handler(batch):
            received.append(batch.events[0].document_id)
            handled.set()

        subscription = Subscription("items", handler)
        thread = threading.Thread(target=subscription.deliver_threadsafe, args=(batch_of("a"),))
        thread.start()
        thread.join()

        await asyncio.wait_for(handled.wait(), timeout=1.0)
        assert received == ["a"]
