"""
Shared fixtures: an in-memory change feed and a mocked search sink.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import pytest

from core.models.storage import StorageResult, StorageErrorCode
from core.storage.client import ElasticsearchSink
from core.sync.events import ChangeEvent, EventBatch
from core.sync.subscription import Subscription


@dataclass
class FakeQuery:
    """Collection path plus the predicates and options added to it"""
    path: str
    filters: Tuple[Tuple[str, str, Any], ...] = ()
    options: Dict[str, Any] = field(default_factory=dict)

    def where(self, field_path: str, op: str, value: Any) -> 'FakeQuery':
        return FakeQuery(self.path, self.filters + ((field_path, op, value),), dict(self.options))

    def limit(self, count: int) -> 'FakeQuery':
        return FakeQuery(self.path, self.filters, {**self.options, "limit": count})


@dataclass
class FakeReference:
    path: str

    @property
    def id(self) -> str:
        return self.path.rsplit('/', 1)[-1]


@dataclass
class FakeSnapshot:
    """Document returned by ``stream``"""
    id: str
    reference: FakeReference


@dataclass
class OpenedFeed:
    subscription_id: str
    query: FakeQuery
    subscription: Subscription
    cancel_handle: Mock


class FakeChangeFeed:
    """In-memory stand-in for the Firestore change feed"""

    def __init__(self):
        self.opened: List[OpenedFeed] = []
        self.updates: List[Tuple[FakeReference, Dict[str, Any]]] = []
        self.deleted: List[FakeReference] = []
        self.streamed: List[FakeQuery] = []
        self.stream_results: List[FakeSnapshot] = []
        self.fail_updates = False

    def collection(self, path: str) -> FakeQuery:
        return FakeQuery(path)

    def where(self, query: FakeQuery, field_path: str, op: str, value: Any) -> FakeQuery:
        return query.where(field_path, op, value)

    def subscribe(self, subscription_id: str, query: FakeQuery, handler) -> Subscription:
        subscription = Subscription(subscription_id, handler)
        cancel_handle = Mock()
        subscription.attach(cancel_handle)
        self.opened.append(OpenedFeed(subscription_id, query, subscription, cancel_handle))
        return subscription

    async def update(self, reference: FakeReference, data: Dict[str, Any]) -> None:
        if self.fail_updates:
            raise RuntimeError("firestore unavailable")
        self.updates.append((reference, data))

    async def delete(self, reference: FakeReference) -> None:
        self.deleted.append(reference)

    async def stream(self, query: FakeQuery) -> List[FakeSnapshot]:
        self.streamed.append(query)
        return list(self.stream_results)

    def feed_for(self, subscription_id: str) -> Optional[OpenedFeed]:
        """Most recently opened feed with this id"""
        for opened in reversed(self.opened):
            if opened.subscription_id == subscription_id:
                return opened
        return None

    @property
    def live(self) -> List[OpenedFeed]:
        return [opened for opened in self.opened if opened.subscription.active]


async def emit(subscription: Subscription, *events: ChangeEvent) -> EventBatch:
    """Deliver one batch to a subscription and wait until it is handled"""
    batch = EventBatch(subscription_id=subscription.id, events=list(events))
    subscription.deliver(batch)
    await subscription.drain()
    return batch


def successful(operation: str):
    async def write(index, doc_type, doc_id, *args, **kwargs):
        return StorageResult.successful(operation, index, doc_id, 1.0)
    return write


def not_found(operation: str):
    async def write(index, doc_type, doc_id, *args, **kwargs):
        return StorageResult.failed_operation(
            operation, index, doc_id, "Document not found", 1.0,
            error_code=StorageErrorCode.NOT_FOUND
        )
    return write


@pytest.fixture
def feed():
    return FakeChangeFeed()


@pytest.fixture
def mock_sink():
    """Create mock Elasticsearch sink where every write succeeds"""
    sink = Mock(spec=ElasticsearchSink)
    sink.exists = AsyncMock(return_value=False)
    sink.create = AsyncMock(side_effect=successful("create"))
    sink.update = AsyncMock(side_effect=lambda index, doc_type, doc_id, body, upsert=False, retry_on_conflict=None: _result(
        "upsert" if upsert else "update", index, doc_id
    ))
    sink.delete = AsyncMock(side_effect=successful("delete"))
    sink.search = AsyncMock(return_value={"hits": {"total": {"value": 0, "relation": "eq"}, "hits": []}})
    sink.ensure_index = AsyncMock(return_value=True)
    sink.health_check = AsyncMock(return_value={"status": "healthy", "cluster_status": "green", "url": "http://localhost:9200"})
    sink.close = AsyncMock()
    return sink


def _result(operation: str, index: str, doc_id: str) -> StorageResult:
    return StorageResult.successful(operation, index, doc_id, 1.0)
