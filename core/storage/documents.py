"""
Firestore change feed adapter for firesearch.

Firestore delivers query snapshots on its own watch threads. This adapter
converts each snapshot's document changes into an EventBatch and hands it to
the Subscription, which moves it onto the asyncio loop. Blocking reads and
writes run in worker threads.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from ..models.config import FirestoreConfig
from ..sync.events import ChangeEvent, ChangeKind, EventBatch
from ..sync.subscription import BatchHandler, Subscription

logger = logging.getLogger(__name__)


class FirestoreChangeFeed:
    """
    Document store collaborator backed by google-cloud-firestore.

    Args:
        config: Project, database and credentials settings
        client: Pre-built Firestore client
    """

    def __init__(
        self,
        config: Optional[FirestoreConfig] = None,
        client: Optional[firestore.Client] = None
    ):
        self.config = config or FirestoreConfig()
        self._client = client
        self.subscriptions_opened = 0

    @property
    def client(self) -> firestore.Client:
        """Get Firestore client instance"""
        if self._client is None:
            kwargs: Dict[str, Any] = {}
            if self.config.project:
                kwargs["project"] = self.config.project
            if self.config.database:
                kwargs["database"] = self.config.database

            if self.config.credentials_path is not None:
                self._client = firestore.Client.from_service_account_json(
                    str(self.config.credentials_path), **kwargs
                )
            else:
                self._client = firestore.Client(**kwargs)
            logger.info(f"Connected to Firestore project {self._client.project}")
        return self._client

    def collection(self, path: str) -> Any:
        """Collection reference for a slash-separated path"""
        return self.client.collection(path)

    def where(self, query: Any, field_path: str, op: str, value: Any) -> Any:
        """Add a field predicate to a query"""
        return query.where(filter=FieldFilter(field_path, op, value))

    def subscribe(self, subscription_id: str, query: Any, handler: BatchHandler) -> Subscription:
        """
        Open a change feed on ``query``.

        Must be called from the event loop that runs ``handler``.

        Args:
            subscription_id: Id recorded on the subscription and its batches
            query: Firestore collection reference or query
            handler: Coroutine function receiving every EventBatch

        Returns:
            The live Subscription; cancel it to close the feed
        """
        subscription = Subscription(subscription_id, handler)

        def on_snapshot(snapshots: Any, changes: Iterable[Any], read_time: Any) -> None:
            try:
                batch = to_batch(subscription_id, changes, read_time)
            except Exception as e:
                logger.error(f"Failed to decode snapshot for {subscription_id}: {e}")
                return
            if batch.events:
                subscription.deliver_threadsafe(batch)

        watch = query.on_snapshot(on_snapshot)
        subscription.attach(watch.unsubscribe)
        self.subscriptions_opened += 1
        logger.debug(f"Opened Firestore watch {subscription_id}")
        return subscription

    async def update(self, reference: Any, data: Dict[str, Any]) -> None:
        """Merge ``data`` into the referenced document"""
        await asyncio.to_thread(reference.update, data)

    async def delete(self, reference: Any) -> None:
        """Delete the referenced document"""
        await asyncio.to_thread(reference.delete)

    async def stream(self, query: Any) -> List[Any]:
        """Fetch every document matching ``query``"""
        return await asyncio.to_thread(lambda: list(query.stream()))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def to_event(change: Any) -> ChangeEvent:
    """Convert a Firestore DocumentChange to a ChangeEvent"""
    kind = ChangeKind.from_name(change.type.name)
    document = change.document
    return ChangeEvent(
        kind=kind,
        document_id=document.id,
        path=document.reference.path,
        payload=None if kind is ChangeKind.REMOVED else (document.to_dict() or {}),
        reference=document.reference
    )


def to_batch(subscription_id: str, changes: Iterable[Any], read_time: Any = None) -> EventBatch:
    """Convert the changes of one snapshot to an EventBatch, keeping their order"""
    batch = EventBatch(
        subscription_id=subscription_id,
        events=[to_event(change) for change in changes]
    )
    if read_time is not None:
        batch.read_time = read_time
    return batch
