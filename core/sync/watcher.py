"""
Collection Watcher.

Binds one reference descriptor to the document store: provisions the target
index mapping when one is declared, opens the root change feed, and routes
its batches either straight to the dispatcher or, for subcollection
references, through the subscription registry.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..models.reference import ReferenceDescriptor
from ..storage.client import ElasticsearchSink
from .dispatcher import ChangeDispatcher
from .events import EventBatch
from .registry import SubscriptionRegistry
from .subscription import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


class WatcherState(Enum):
    """Lifecycle of a collection watcher"""
    UNBOUND = "unbound"
    BINDING = "binding"     # Mapping provisioning in flight
    BOUND = "bound"         # Root subscription live
    STOPPED = "stopped"


class CollectionWatcher:
    """
    Replication of one reference into the search sink.

    Owns the root subscription, one ChangeDispatcher and, for subcollection
    references, one SubscriptionRegistry.
    """

    def __init__(
        self,
        descriptor: ReferenceDescriptor,
        feed: ChangeFeed,
        sink: ElasticsearchSink
    ):
        """
        Initialize the watcher.

        Args:
            descriptor: Reference to replicate
            feed: Document store change feed
            sink: Search sink receiving the writes
        """
        self.descriptor = descriptor
        self.feed = feed
        self.sink = sink

        self.dispatcher = ChangeDispatcher(descriptor, sink)
        self.registry: Optional[SubscriptionRegistry] = None
        if descriptor.is_subcollection:
            self.registry = SubscriptionRegistry(descriptor, feed, self.dispatcher)

        self.state = WatcherState.UNBOUND
        self.root_subscription: Optional[Subscription] = None
        self.bound_at: Optional[datetime] = None
        self.index_created = False

    async def bind(self) -> bool:
        """
        Provision the mapping (if any) and open the root subscription.

        Returns:
            True if the watcher is bound after the call
        """
        if self.state != WatcherState.UNBOUND:
            logger.warning(f"Watcher for {self.descriptor.key} is {self.state.value}, not binding again")
            return self.state == WatcherState.BOUND

        self.state = WatcherState.BINDING
        descriptor = self.descriptor

        try:
            if descriptor.mappings:
                self.index_created = await self.sink.ensure_index(
                    descriptor.index, self._literal_type(), descriptor.mappings
                )
        except Exception as e:
            logger.error(f"Failed to provision mapping for index {descriptor.index}: {e}")
            self.state = WatcherState.UNBOUND
            return False

        if self.state != WatcherState.BINDING:
            # Stopped while the mapping was being provisioned
            return False

        query = self.feed.collection(descriptor.collection)
        if descriptor.builder is not None:
            query = descriptor.builder(query)

        if self.registry is not None:
            handler = self.registry.on_parent_events
        else:
            describe = descriptor.describe()
            logger.info(
                f"Begin listening to changes for collection: {descriptor.collection} "
                f"include: [{', '.join(describe['include'])}] exclude: [{', '.join(describe['exclude'])}]"
            )
            handler = self._on_root_events

        self.root_subscription = self.feed.subscribe(descriptor.collection, query, handler)
        self.state = WatcherState.BOUND
        self.bound_at = datetime.now()
        return True

    async def stop(self) -> None:
        """Cancel the root subscription and every subcollection subscription."""
        if self.state == WatcherState.STOPPED:
            return
        self.state = WatcherState.STOPPED

        if self.root_subscription is not None:
            self.root_subscription.cancel()
        if self.registry is not None:
            self.registry.close_all()

        logger.info(f"Stopped watching {self.descriptor.key}")

    async def _on_root_events(self, batch: EventBatch) -> None:
        await self.dispatcher.on_events(batch, is_live=lambda: self.state != WatcherState.STOPPED)

    def _literal_type(self) -> str:
        doc_type = self.descriptor.type
        return doc_type if isinstance(doc_type, str) else "_doc"

    def get_status(self) -> Dict[str, Any]:
        metrics = self.dispatcher.metrics
        return {
            "state": self.state.value,
            "bound_at": self.bound_at.isoformat() if self.bound_at else None,
            "subcollection_subscriptions": len(self.registry) if self.registry is not None else 0,
            "events_processed": metrics.events_processed,
            "events_failed": metrics.events_failed,
            "events_suppressed": metrics.events_suppressed,
            "last_error": metrics.last_error_message,
        }
