"""
Unit tests for the Firestore change feed adapter.
"""

import asyncio
import threading
from unittest.mock import AsyncMock, Mock, patch

import pytest

from core.models.config import FirestoreConfig
from core.storage.documents import FirestoreChangeFeed, to_batch, to_event
from core.sync.events import ChangeKind


def document_change(kind: str, document_id: str, data=None, path: str = None):
    change = Mock()
    change.type.name = kind
    change.document.id = document_id
    change.document.reference.path = path or f"items/{document_id}"
    change.document.to_dict.return_value = data
    return change


class TestConversion:

    def test_added_change(self):
        event = to_event(document_change("ADDED", "d1", {"a": 1}))

        assert event.kind is ChangeKind.ADDED
        assert event.document_id == "d1"
        assert event.path == "items/d1"
        assert event.payload == {"a": 1}
        assert event.reference is not None

    def test_removed_change_has_no_payload(self):
        event = to_event(document_change("REMOVED", "d1", {"a": 1}))
        assert event.payload is None

    def test_empty_document(self):
        event = to_event(document_change("MODIFIED", "d1", None))
        assert event.payload == {}

    def test_batch_keeps_order(self):
        batch = to_batch("items", [
            document_change("ADDED", "a", {}),
            document_change("REMOVED", "b"),
            document_change("MODIFIED", "a", {"x": 1}),
        ])

        assert batch.subscription_id == "items"
        assert [(e.kind.value, e.document_id) for e in batch.events] == [
            ("added", "a"), ("removed", "b"), ("modified", "a")
        ]


class TestSubscribe:

    @pytest.fixture
    def query(self):
        query = Mock()
        query.on_snapshot.return_value = Mock()
        return query

    @pytest.fixture
    def feed(self):
        return FirestoreChangeFeed(client=Mock())

    @pytest.mark.asyncio
    async def test_snapshot_delivered_to_handler(self, feed, query):
        handler = AsyncMock()
        subscription = feed.subscribe("items", query, handler)
        on_snapshot = query.on_snapshot.call_args.args[0]

        thread = threading.Thread(
            target=on_snapshot,
            args=([], [document_change("ADDED", "d1", {"a": 1})], None)
        )
        thread.start()
        thread.join()
        await asyncio.sleep(0.01)
        await subscription.drain()

        batch = handler.await_args.args[0]
        assert batch.subscription_id == "items"
        assert batch.events[0].document_id == "d1"
        assert feed.subscriptions_opened == 1

    @pytest.mark.asyncio
    async def test_empty_snapshot_not_delivered(self, feed, query):
        handler = AsyncMock()
        subscription = feed.subscribe("items", query, handler)
        on_snapshot = query.on_snapshot.call_args.args[0]

        on_snapshot([], [], None)
        await asyncio.sleep(0)
        await subscription.drain()

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_unsubscribes_watch(self, feed, query):
        subscription = feed.subscribe("items", query, AsyncMock())

        subscription.cancel()

        query.on_snapshot.return_value.unsubscribe.assert_called_once_with()


class TestDocumentOperations:

    @pytest.mark.asyncio
    async def test_update(self):
        reference = Mock()
        await FirestoreChangeFeed(client=Mock()).update(reference, {"response": {"total": 0}})
        reference.update.assert_called_once_with({"response": {"total": 0}})

    @pytest.mark.asyncio
    async def test_delete(self):
        reference = Mock()
        await FirestoreChangeFeed(client=Mock()).delete(reference)
        reference.delete.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_stream(self):
        query = Mock()
        query.stream.return_value = iter(["a", "b"])

        assert await FirestoreChangeFeed(client=Mock()).stream(query) == ["a", "b"]

    def test_where(self):
        query = Mock()

        FirestoreChangeFeed(client=Mock()).where(query, "response.timestamp", "<=", 5)

        field_filter = query.where.call_args.kwargs["filter"]
        assert field_filter.field_path == "response.timestamp"
        assert field_filter.op_string == "<="
        assert field_filter.value == 5

    def test_collection(self):
        client = Mock()
        FirestoreChangeFeed(client=client).collection("users/u1/emails")
        client.collection.assert_called_once_with("users/u1/emails")


class TestClient:

    def test_client_created_lazily(self):
        with patch("core.storage.documents.firestore.Client") as client_cls:
            feed = FirestoreChangeFeed(FirestoreConfig(project="demo", database="(default)"))
            client_cls.assert_not_called()

            assert feed.client is client_cls.return_value
            assert feed.client is client_cls.return_value

        client_cls.assert_called_once_with(project="demo", database="(default)")

    def test_client_from_credentials(self, tmp_path):
        credentials = tmp_path / "sa.json"
        credentials.write_text("{}")

        with patch("core.storage.documents.firestore.Client") as client_cls:
            feed = FirestoreChangeFeed(FirestoreConfig(credentials_path=credentials))
            feed.client

        client_cls.from_service_account_json.assert_called_once_with(str(credentials))

    def test_close(self):
        client = Mock()
        feed = FirestoreChangeFeed(client=client)

        feed.close()

        client.close.assert_called_once_with()
