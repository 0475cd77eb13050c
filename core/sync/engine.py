"""
Replication Engine.

Central coordinator for replicating Firestore collections into Elasticsearch.
Owns one CollectionWatcher per reference descriptor and, optionally, the
Query Bridge on the control collection.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..models.config import ReplicationConfig
from ..models.reference import ReferenceDescriptor
from ..storage.client import ElasticsearchSink
from .subscription import ChangeFeed
from .watcher import CollectionWatcher, WatcherState

if TYPE_CHECKING:
    from ..search.bridge import QueryBridge

logger = logging.getLogger(__name__)


@dataclass
class EngineMetrics:
    """Engine level counters. Per-event counters live on each dispatcher."""

    watchers_bound: int = 0
    watchers_failed: int = 0
    uptime_seconds: float = 0.0

    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


class ReplicationEngine:
    """
    Central coordinator for Firestore to Elasticsearch replication.

    Features:
    - One collection watcher per reference, never two
    - Per-parent subcollection subscriptions opened and closed with their parents
    - Optional Query Bridge over the control collection
    - Graceful shutdown cancelling every live subscription
    """

    def __init__(
        self,
        feed: ChangeFeed,
        sink: ElasticsearchSink,
        references: Iterable[ReferenceDescriptor],
        config: Optional[ReplicationConfig] = None,
        enable_query_bridge: Optional[bool] = None
    ):
        """
        Initialize the replication engine.

        Args:
            feed: Document store change feed
            sink: Search sink receiving the writes
            references: Reference catalog to replicate
            config: Replication configuration
            enable_query_bridge: Overrides ``config.query_bridge.enabled``
        """
        self.feed = feed
        self.sink = sink
        self.config = config or ReplicationConfig()

        self.watchers: Dict[str, CollectionWatcher] = {}
        for descriptor in references:
            if descriptor.key in self.watchers:
                raise ValueError(f"Duplicate reference: {descriptor.key}")
            self.watchers[descriptor.key] = CollectionWatcher(descriptor, feed, sink)

        if enable_query_bridge is None:
            enable_query_bridge = self.config.query_bridge.enabled
        self.query_bridge: Optional["QueryBridge"] = None
        if enable_query_bridge:
            # Imported here, the bridge module itself depends on this package
            from ..search.bridge import QueryBridge
            self.query_bridge = QueryBridge(feed, sink, self.config.query_bridge)

        self.is_running = False
        self.start_time: Optional[datetime] = None
        self.metrics = EngineMetrics()

        logger.info(f"Initialized ReplicationEngine with {len(self.watchers)} references")

    async def start(self) -> bool:
        """
        Bind every watcher and start the Query Bridge.

        A watcher that fails to bind is logged and left unbound; the other
        references keep replicating.

        Returns:
            True if every watcher bound
        """
        if self.is_running:
            logger.warning("Replication engine is already running")
            return True

        logger.info("Starting ReplicationEngine")
        self.is_running = True
        self.start_time = datetime.now()

        all_bound = True
        for key, watcher in self.watchers.items():
            try:
                bound = await watcher.bind()
            except Exception as e:
                logger.error(f"Error binding {key}: {e}")
                bound = False

            if bound:
                self.metrics.watchers_bound += 1
            else:
                all_bound = False
                self.metrics.watchers_failed += 1
                self.metrics.last_error_message = f"Failed to bind {key}"
                self.metrics.last_error_time = datetime.now()

        if self.query_bridge is not None:
            await self.query_bridge.start()

        logger.info(
            f"Started replication engine: {self.metrics.watchers_bound}/{len(self.watchers)} references bound"
        )
        return all_bound

    async def stop(self) -> None:
        """Stop every watcher and the Query Bridge."""
        if not self.is_running:
            return

        logger.info("Stopping ReplicationEngine")
        self.is_running = False

        for key, watcher in self.watchers.items():
            try:
                await watcher.stop()
            except Exception as e:
                logger.warning(f"Error stopping watcher {key}: {e}")

        if self.query_bridge is not None:
            await self.query_bridge.stop()

        if self.start_time:
            self.metrics.uptime_seconds = (datetime.now() - self.start_time).total_seconds()

        logger.info("Stopped ReplicationEngine")

    def get_watcher(self, key: str) -> Optional[CollectionWatcher]:
        return self.watchers.get(key)

    @property
    def bound_watchers(self) -> List[CollectionWatcher]:
        return [w for w in self.watchers.values() if w.state == WatcherState.BOUND]

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information about the engine.

        Returns:
            Dictionary with engine, watcher and bridge status
        """
        uptime = self.metrics.uptime_seconds
        if self.is_running and self.start_time:
            uptime = (datetime.now() - self.start_time).total_seconds()

        watchers = {key: watcher.get_status() for key, watcher in self.watchers.items()}
        return {
            "is_running": self.is_running,
            "uptime_seconds": uptime,
            "references_count": len(self.watchers),
            "bound_references": len(self.bound_watchers),
            "events_processed": sum(w["events_processed"] for w in watchers.values()),
            "events_failed": sum(w["events_failed"] for w in watchers.values()),
            "last_error": self.metrics.last_error_message,
            "last_error_time": self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None,
            "references": watchers,
            "query_bridge": self.query_bridge.get_status() if self.query_bridge is not None else None,
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
