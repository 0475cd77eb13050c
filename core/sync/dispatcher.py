"""
Change Dispatcher.

Classifies every change event of a batch and applies it to the search sink:
ADDED becomes a create (or an upsert when the document is already indexed),
MODIFIED a partial update, REMOVED a delete. Each event is isolated, so one
failing write never stops the rest of the batch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.reference import ReferenceDescriptor
from ..storage.client import ElasticsearchSink
from . import pipeline
from .events import ChangeEvent, ChangeKind, EventBatch

logger = logging.getLogger(__name__)

@dataclass
class DispatcherMetrics:
    """Counters for one dispatcher."""

    events_processed: int = 0
    events_failed: int = 0
    events_suppressed: int = 0

    documents_created: int = 0
    documents_upserted: int = 0
    documents_updated: int = 0
    documents_deleted: int = 0

    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


class ChangeDispatcher:
    """
    Routes change events of one reference into the search sink.

    Args:
        descriptor: Reference the events belong to
        sink: Search sink receiving the writes
    """

    def __init__(self, descriptor: ReferenceDescriptor, sink: ElasticsearchSink):
        self.descriptor = descriptor
        self.sink = sink
        self.metrics = DispatcherMetrics()

    async def on_events(
        self,
        batch: EventBatch,
        parent_event: Optional[ChangeEvent] = None,
        is_live: Optional[Callable[[], bool]] = None
    ) -> List[Dict[str, Any]]:
        """
        Apply a batch of changes in delivery order.

        Args:
            batch: Events from one snapshot of one subscription
            parent_event: Parent document, for subcollection subscriptions
            is_live: Checked before each event; once it returns False the rest
                of the batch is dropped

        Returns:
            One result dict per event
        """
        try:
            index = self.descriptor.resolve_index(batch, parent_event)
            doc_type = self.descriptor.resolve_type(batch, parent_event)
        except Exception as e:
            self._record_failure(f"Cannot resolve index/type for batch {batch.batch_id} of {self.descriptor.collection}: {e}")
            self.metrics.events_failed += batch.event_count
            return [{"success": False, "error": str(e), "document_id": event.document_id} for event in batch.events]

        results = []
        for position, event in enumerate(batch.events):
            if is_live is not None and not is_live():
                logger.debug(
                    f"Subscription {batch.subscription_id} closed, dropping "
                    f"{batch.event_count - position} remaining events"
                )
                break
            results.append(await self.dispatch(event, index, doc_type, parent_event))
        return results

    async def dispatch(
        self,
        event: ChangeEvent,
        index: str,
        doc_type: str,
        parent_event: Optional[ChangeEvent] = None
    ) -> Dict[str, Any]:
        """Apply a single event. Never raises."""
        try:
            if event.kind == ChangeKind.ADDED:
                result = await self.handle_added(event, index, doc_type, parent_event)
            elif event.kind == ChangeKind.MODIFIED:
                result = await self.handle_modified(event, index, doc_type, parent_event)
            else:
                result = await self.handle_removed(event, index, doc_type)
        except Exception as e:
            result = {
                "operation": event.kind.value,
                "document_id": event.document_id,
                "success": False,
                "error": str(e)
            }

        if result["success"]:
            self.metrics.events_processed += 1
        else:
            self.metrics.events_failed += 1
            self._record_failure(
                f"Error in {event.kind.value.upper()} handler [doc@{event.document_id}]: {result['error']}"
            )
        return result

    async def handle_added(
        self,
        event: ChangeEvent,
        index: str,
        doc_type: str,
        parent_event: Optional[ChangeEvent] = None
    ) -> Dict[str, Any]:
        """
        Index a newly observed document.

        Redelivered ADDED events are expected, so an already indexed document
        is upserted rather than created again.
        """
        body = pipeline.apply(self.descriptor, event.payload, parent_event)
        if body is None:
            return self._suppressed(event)

        if await self.sink.exists(index, doc_type, event.document_id):
            result = await self.sink.update(
                index, doc_type, event.document_id, body, upsert=True
            )
            operation = "upsert"
        else:
            result = await self.sink.create(index, doc_type, event.document_id, body)
            operation = "create"

        if result.success:
            if operation == "upsert":
                self.metrics.documents_upserted += 1
            else:
                self.metrics.documents_created += 1
            logger.debug(f"{operation} {index}/{event.document_id}")

        return {
            "operation": operation,
            "document_id": event.document_id,
            "index": index,
            "success": result.success,
            "error": result.error
        }

    async def handle_modified(
        self,
        event: ChangeEvent,
        index: str,
        doc_type: str,
        parent_event: Optional[ChangeEvent] = None
    ) -> Dict[str, Any]:
        """
        Merge a changed document into its indexed copy.

        A document the filter now rejects is left in the index as it was.
        """
        body = pipeline.apply(self.descriptor, event.payload, parent_event)
        if body is None:
            return self._suppressed(event)

        result = await self.sink.update(index, doc_type, event.document_id, body)
        if result.success:
            self.metrics.documents_updated += 1
            logger.debug(f"update {index}/{event.document_id}")

        return {
            "operation": "update",
            "document_id": event.document_id,
            "index": index,
            "success": result.success,
            "error": result.error
        }

    async def handle_removed(self, event: ChangeEvent, index: str, doc_type: str) -> Dict[str, Any]:
        """Delete the indexed copy; a document that is already gone is fine."""
        result = await self.sink.delete(index, doc_type, event.document_id)

        success = result.success or result.not_found
        if result.success:
            self.metrics.documents_deleted += 1
        elif result.not_found:
            logger.debug(f"Delete of absent document {index}/{event.document_id} ignored")

        return {
            "operation": "delete",
            "document_id": event.document_id,
            "index": index,
            "success": success,
            "error": None if success else result.error
        }

    def _suppressed(self, event: ChangeEvent) -> Dict[str, Any]:
        self.metrics.events_suppressed += 1
        logger.debug(f"Filter suppressed {event}")
        return {
            "operation": "suppressed",
            "document_id": event.document_id,
            "success": True,
            "error": None
        }

    def _record_failure(self, message: str) -> None:
        logger.error(message)
        self.metrics.last_error_message = message
        self.metrics.last_error_time = datetime.now()
