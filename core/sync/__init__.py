"""
Firestore to Elasticsearch replication.

Key Components:
- ChangeEvent / EventBatch: Change feed event models
- Subscription: Ordered, cancellable delivery of one change feed
- SubscriptionRegistry: Per-parent subcollection subscriptions
- ChangeDispatcher: Applies change events to the search sink
- CollectionWatcher: Binds one reference to the document store
- ReplicationEngine: Central coordinator for every reference
"""

from .events import ChangeEvent, ChangeKind, EventBatch
from .subscription import ChangeFeed, Subscription
from .registry import SubscriptionRegistry
from .dispatcher import ChangeDispatcher, DispatcherMetrics
from .watcher import CollectionWatcher, WatcherState
from .engine import ReplicationEngine

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "EventBatch",
    "ChangeFeed",
    "Subscription",
    "SubscriptionRegistry",
    "ChangeDispatcher",
    "DispatcherMetrics",
    "CollectionWatcher",
    "WatcherState",
    "ReplicationEngine",
]

__version__ = "1.0.0"
