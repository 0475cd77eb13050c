"""
Subscription Registry.

Tracks the per-parent subcollection subscriptions of one reference. A
subscription is opened when a parent document is added and cancelled when
it is removed, so removed parents never leave a feed running behind them.
"""

import logging
from typing import Dict, List, Optional

from ..models.reference import ReferenceDescriptor
from .dispatcher import ChangeDispatcher
from .events import ChangeEvent, ChangeKind, EventBatch
from .subscription import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """
    Owner of every subcollection subscription of one reference.

    The mapping from parent id to subscription is only touched from the
    event loop, and no method awaits between reading and writing it.
    """

    def __init__(
        self,
        descriptor: ReferenceDescriptor,
        feed: ChangeFeed,
        dispatcher: ChangeDispatcher
    ):
        if descriptor.subcollection is None:
            raise ValueError(f"{descriptor.collection} has no subcollection to register")
        self.descriptor = descriptor
        self.feed = feed
        self.dispatcher = dispatcher
        self._subscriptions: Dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, parent_id: str) -> bool:
        return parent_id in self._subscriptions

    def get(self, parent_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(parent_id)

    @property
    def parent_ids(self) -> List[str]:
        return list(self._subscriptions)

    async def on_parent_events(self, batch: EventBatch) -> None:
        """Batch handler for the root subscription of a subcollection reference."""
        for event in batch.events:
            try:
                self.on_parent_event(event)
            except Exception as e:
                logger.error(f"Error handling parent {event}: {e}")

    def on_parent_event(self, event: ChangeEvent) -> None:
        """Open or close the subscription of one parent document."""
        if event.kind == ChangeKind.ADDED:
            self._open(event)
        elif event.kind == ChangeKind.REMOVED:
            self._close(event.document_id)

    def close_all(self) -> int:
        """Cancel every subscription. Returns how many were live."""
        subscriptions, self._subscriptions = self._subscriptions, {}
        for subscription in subscriptions.values():
            subscription.cancel()
        if subscriptions:
            logger.info(f"Closed {len(subscriptions)} subscriptions for {self.descriptor.key}")
        return len(subscriptions)

    def _open(self, parent: ChangeEvent) -> None:
        parent_id = parent.document_id
        if parent_id in self._subscriptions:
            logger.debug(f"Subscription for {parent_id} already live, ignoring repeated ADDED")
            return

        path = self.descriptor.subcollection_path(parent_id)
        query = self.feed.collection(path)
        if self.descriptor.sub_builder is not None:
            query = self.descriptor.sub_builder(query)

        dispatcher = self.dispatcher

        async def handle_children(batch: EventBatch) -> None:
            batch.events = [event.with_parent(parent) for event in batch.events]
            await dispatcher.on_events(batch, parent, is_live=lambda: subscription.active)

        subscription = self.feed.subscribe(parent_id, query, handle_children)
        self._subscriptions[parent_id] = subscription

        describe = self.descriptor.describe()
        logger.info(
            f"Begin listening to changes for collection: {self.descriptor.collection} "
            f"documentId: {parent_id} subcollection: {self.descriptor.subcollection} "
            f"include: [{', '.join(describe['include'])}] exclude: [{', '.join(describe['exclude'])}]"
        )

    def _close(self, parent_id: str) -> None:
        subscription = self._subscriptions.pop(parent_id, None)
        if subscription is None:
            logger.debug(f"No subscription registered for removed parent {parent_id}")
            return
        subscription.cancel()
        logger.info(f"Stopped listening to {self.descriptor.subcollection_path(parent_id)}")
