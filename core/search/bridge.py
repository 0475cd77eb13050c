"""
Query Bridge.

Runs searches on behalf of clients that can only talk to Firestore. A client
writes a record with a request field into the control collection; the bridge
runs the search and writes the outcome into the response field of the same
record. Answered records are swept away once they outlive the retention
interval.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..models.config import QueryBridgeConfig
from ..storage.client import ElasticsearchSink
from ..sync.events import ChangeEvent, ChangeKind, EventBatch
from ..sync.subscription import ChangeFeed, Subscription

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = (
    "Queries are required to have an `index`, `type` and either a `q`:string or `body`"
)


class InvalidQueryRequest(ValueError):
    """Request field is malformed or misses required keys."""

    def __init__(self, message: str = INVALID_REQUEST_MESSAGE):
        super().__init__(message)


class QueryRequest(BaseModel):
    """Search request as written by a client. Extra keys (size, from, sort) pass through."""
    model_config = ConfigDict(extra="allow")

    index: str = Field(min_length=1)
    type: str = Field(min_length=1)
    q: Optional[str] = None
    body: Optional[Dict[str, Any]] = None

    @model_validator(mode='after')
    def validate_query(self) -> 'QueryRequest':
        if not self.q and self.body is None:
            raise ValueError('either q or body is required')
        return self

    def to_search_request(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def parse_request(raw: Any) -> QueryRequest:
    """
    Parse the request field of a control record.

    Accepts a mapping or a JSON string. Anything that does not yield a valid
    request raises InvalidQueryRequest.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidQueryRequest() from None

    if not isinstance(raw, dict):
        raise InvalidQueryRequest()

    try:
        return QueryRequest.model_validate(raw)
    except ValidationError:
        raise InvalidQueryRequest() from None


def rekey_hits(response: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn ``hits.hits`` from a list into a mapping keyed by hit ``_id``.

    Also lifts the hit total to a top-level ``total`` number.
    """
    response = dict(response)
    total = 0
    hits = response.get("hits")
    if isinstance(hits, dict):
        hits = dict(hits)
        if isinstance(hits.get("hits"), list):
            hits["hits"] = {hit["_id"]: hit for hit in hits["hits"]}
        response["hits"] = hits

        total = hits.get("total", len(hits.get("hits") or {}))
        if isinstance(total, dict):
            total = total.get("value", 0)

    response.setdefault("total", total)
    return response


class QueryBridge:
    """
    Search bridge over a Firestore control collection.

    Args:
        feed: Document store change feed
        sink: Search sink running the queries
        config: Control collection names and retention
        clock: Returns the current time (UTC aware)
    """

    def __init__(
        self,
        feed: ChangeFeed,
        sink: ElasticsearchSink,
        config: Optional[QueryBridgeConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.feed = feed
        self.sink = sink
        self.config = config or QueryBridgeConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.subscription: Optional[Subscription] = None
        self._in_flight: Set[str] = set()
        self._requests: Set[asyncio.Task] = set()
        self._cleanup_handle: Optional[asyncio.TimerHandle] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

        # Counters
        self.requests_processed = 0
        self.requests_failed = 0
        self.records_cleaned = 0
        self.last_cleanup: Optional[datetime] = None

    @property
    def request_key(self) -> str:
        return self.config.request_key

    @property
    def response_key(self) -> str:
        return self.config.response_key

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start watching the control collection and schedule the first cleanup."""
        if self._running:
            logger.warning("Query bridge is already running")
            return
        self._running = True

        collection = self.feed.collection(self.config.collection)
        self.subscription = self.feed.subscribe(self.config.collection, collection, self.on_events)
        logger.info(
            f"Listening on: '{self.config.collection}' for queries "
            f"(in: {self.request_key} -> out: {self.response_key})"
        )

        self._schedule_cleanup()
        logger.info(f"Cleanup will happen in {self.config.cleanup_interval_s}s")

    async def stop(self) -> None:
        """Stop watching, cancel unanswered requests and any pending cleanup."""
        if not self._running:
            return
        self._running = False

        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None

        if self._cleanup_handle is not None:
            self._cleanup_handle.cancel()
            self._cleanup_handle = None

        for task in list(self._requests):
            task.cancel()
        await asyncio.gather(*list(self._requests), return_exceptions=True)
        self._in_flight.clear()

        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None

        logger.info("Stopped query bridge")

    async def on_events(self, batch: EventBatch) -> None:
        """
        Batch handler for the control collection subscription.

        Requests are answered concurrently so a slow search never holds up
        the feed. A record is marked in flight before its task starts, and
        copies of it delivered meanwhile are skipped.
        """
        loop = asyncio.get_running_loop()
        for event in batch.events:
            if not self.is_pending(event):
                continue

            self._in_flight.add(event.document_id)
            task = loop.create_task(self._answer(event))
            self._requests.add(task)
            task.add_done_callback(self._requests.discard)

    async def join(self) -> None:
        """Wait until every request being answered has been written back."""
        while self._requests:
            await asyncio.gather(*list(self._requests), return_exceptions=True)

    async def _answer(self, event: ChangeEvent) -> None:
        try:
            await self.process(event)
        except Exception as e:
            self.requests_failed += 1
            logger.error(f"Error answering request {event.document_id}: {e}")
        finally:
            self._in_flight.discard(event.document_id)

    def is_pending(self, event: ChangeEvent) -> bool:
        """True for records that still wait for an answer and are not being answered."""
        if event.kind == ChangeKind.REMOVED:
            return False
        if event.document_id in self._in_flight:
            return False
        return (event.payload or {}).get(self.response_key) is None

    async def process(self, event: ChangeEvent) -> Dict[str, Any]:
        """
        Answer one request record.

        Returns:
            The response written back to the record
        """
        logger.info(f"processing query request: {event.document_id}")

        try:
            request = parse_request((event.payload or {}).get(self.request_key))
        except InvalidQueryRequest as e:
            logger.warning(f"Invalid query request {event.document_id}")
            return await self.respond_error(event, str(e))

        try:
            response = await self.sink.search(request.to_search_request())
        except Exception as e:
            logger.error(f"Search failed for request {event.document_id}: {e}")
            return await self.respond_error(event, str(e))

        if response.get("error"):
            return await self.respond_error(event, str(response["error"]))

        return await self.send(event, response)

    async def respond_error(self, event: ChangeEvent, message: str) -> Dict[str, Any]:
        self.requests_failed += 1
        response = {"total": 0, "error": message}
        await self._write_response(event, response)
        return response

    async def send(self, event: ChangeEvent, response: Dict[str, Any]) -> Dict[str, Any]:
        self.requests_processed += 1
        response = rekey_hits(response)
        response["timestamp"] = self._clock()
        await self._write_response(event, response)
        return response

    async def _write_response(self, event: ChangeEvent, response: Dict[str, Any]) -> None:
        if event.reference is None:
            logger.error(f"No document reference for request {event.document_id}, response dropped")
            return
        try:
            await self.feed.update(event.reference, {self.response_key: response})
        except Exception as e:
            logger.error(f"Failed to write response for request {event.document_id}: {e}")

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Delete answered records older than the retention interval.

        Returns:
            Number of records deleted
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.config.cleanup_interval_s)
        logger.info(f"{now.isoformat()}: Running Cleanup")

        collection = self.feed.collection(self.config.collection)
        query = self.feed.where(collection, f"{self.response_key}.timestamp", "<=", cutoff)
        items = await self.feed.stream(query)

        deleted = 0
        if items:
            logger.warning(f"housekeeping: found {len(items)} outbound orphans (removing them now)")
            for item in items:
                try:
                    await self.feed.delete(item.reference)
                    deleted += 1
                except Exception as e:
                    logger.error(f"Failed to delete control record {item.id}: {e}")

        self.records_cleaned += deleted
        self.last_cleanup = now
        return deleted

    def _schedule_cleanup(self) -> None:
        if not self._running:
            return
        loop = asyncio.get_running_loop()
        self._cleanup_handle = loop.call_later(self.config.cleanup_interval_s, self._start_cleanup)

    def _start_cleanup(self) -> None:
        self._cleanup_handle = None
        self._cleanup_task = asyncio.get_running_loop().create_task(self._run_cleanup())

    async def _run_cleanup(self) -> None:
        try:
            await self.cleanup()
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
        finally:
            # Next run is only scheduled once this one has finished
            self._schedule_cleanup()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "collection": self.config.collection,
            "requests_processed": self.requests_processed,
            "requests_failed": self.requests_failed,
            "requests_in_flight": len(self._in_flight),
            "records_cleaned": self.records_cleaned,
            "last_cleanup": self.last_cleanup.isoformat() if self.last_cleanup else None,
        }
