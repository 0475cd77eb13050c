"""
Change Feed Subscriptions.

A Subscription is the engine's handle on one live change feed. Batches may be
delivered from any thread; they are moved onto the owning event loop and fed
to the handler one at a time, in delivery order. Cancelling is idempotent and
fire-and-forget, and a cancelled subscription drops anything still delivered
to it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .events import EventBatch

logger = logging.getLogger(__name__)

BatchHandler = Callable[[EventBatch], Awaitable[None]]
CancelHandle = Callable[[], None]


class ChangeFeed(Protocol):
    """Document store operations the engine relies on."""

    def collection(self, path: str) -> Any: ...

    def where(self, query: Any, field_path: str, op: str, value: Any) -> Any: ...

    def subscribe(self, subscription_id: str, query: Any, handler: BatchHandler) -> 'Subscription': ...

    async def update(self, reference: Any, data: Dict[str, Any]) -> None: ...

    async def delete(self, reference: Any) -> None: ...

    async def stream(self, query: Any) -> List[Any]: ...


class Subscription:
    """
    Live connection to a change feed.

    Args:
        subscription_id: Collection path for root subscriptions, parent
            document id for subcollection subscriptions
        handler: Coroutine function invoked with every batch
        loop: Event loop the handler runs on (defaults to the running loop)
    """

    def __init__(
        self,
        subscription_id: str,
        handler: BatchHandler,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        self.id = subscription_id
        self._handler = handler
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._cancel_handle: Optional[CancelHandle] = None
        self._cancelled = False

        self.batches_delivered = 0
        self.batches_dropped = 0

    @property
    def active(self) -> bool:
        return not self._cancelled

    def attach(self, cancel_handle: CancelHandle) -> None:
        """Record the store-level token that terminates the feed."""
        if self._cancelled:
            # Cancelled before the store returned its handle
            self._invoke_cancel_handle(cancel_handle)
            return
        self._cancel_handle = cancel_handle

    def deliver(self, batch: EventBatch) -> None:
        """Queue a batch for the handler. Must be called on the owning loop."""
        if self._cancelled:
            self.batches_dropped += 1
            logger.debug(f"Dropping batch for cancelled subscription {self.id}")
            return

        self._queue.put_nowait(batch)
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = self._loop.create_task(self._pump())

    def deliver_threadsafe(self, batch: EventBatch) -> None:
        """Queue a batch from a foreign thread (store callback threads)."""
        if self._loop.is_closed():
            logger.debug(f"Event loop closed, dropping batch for {self.id}")
            return
        try:
            self._loop.call_soon_threadsafe(self.deliver, batch)
        except RuntimeError as e:
            # Loop shutting down
            if "closed" not in str(e).lower():
                logger.error(f"Failed to schedule batch for {self.id}: {e}")

    def cancel(self) -> None:
        """Terminate the feed. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True

        pending = self._queue.qsize()
        if pending:
            self.batches_dropped += pending
            while not self._queue.empty():
                self._queue.get_nowait()

        if self._cancel_handle is not None:
            handle, self._cancel_handle = self._cancel_handle, None
            self._invoke_cancel_handle(handle)

        logger.debug(f"Cancelled subscription {self.id} ({pending} pending batches dropped)")

    async def drain(self) -> None:
        """Wait for the batch currently being handled, if any."""
        task = self._pump_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _pump(self) -> None:
        while not self._queue.empty():
            batch = self._queue.get_nowait()
            if self._cancelled:
                self.batches_dropped += 1
                continue
            try:
                await self._handler(batch)
                self.batches_delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling batch {batch.batch_id} on subscription {self.id}: {e}")

    def _invoke_cancel_handle(self, handle: CancelHandle) -> None:
        try:
            handle()
        except Exception as e:
            logger.warning(f"Error cancelling subscription {self.id}: {e}")

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"Subscription({self.id!r}, {state})"
