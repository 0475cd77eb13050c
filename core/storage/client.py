"""
Elasticsearch sink client for firesearch.

Wraps AsyncElasticsearch with the small contract the replication engine
needs: existence checks, create, (partial) update with upsert, delete,
search and lazy index provisioning. Writes report StorageResults instead of
raising, and run under a bounded number of concurrent requests.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from elasticsearch import AsyncElasticsearch, ConflictError, NotFoundError

from ..models.config import ElasticsearchConfig
from ..models.storage import StorageResult, StorageErrorCode

logger = logging.getLogger(__name__)

# Search request keys passed through to Elasticsearch, with their client names
SEARCH_PASSTHROUGH_KEYS = {
    "q": "q",
    "body": "body",
    "size": "size",
    "from": "from_",
    "sort": "sort",
    "default_operator": "default_operator",
    "df": "df",
}


class ElasticsearchSink:
    """
    Search sink backed by Elasticsearch.

    Elasticsearch 8 indices hold a single mapping type, so the ``doc_type``
    taken by every method is carried for logging and validation only and is
    not part of the document address.

    Features:
    - Idempotent upsert path (doc_as_upsert) with server-side conflict retries
    - Not-found deletes reported with a dedicated error code
    - Bounded write concurrency shared by every watcher using the sink
    """

    def __init__(
        self,
        config: Optional[ElasticsearchConfig] = None,
        client: Optional[AsyncElasticsearch] = None
    ):
        """
        Initialize the sink.

        Args:
            config: Connection and write settings
            client: Pre-built client (tests, custom transports)
        """
        self.config = config or ElasticsearchConfig()
        self._client = client
        self._write_slots = asyncio.Semaphore(self.config.max_concurrent_writes)

        # Performance tracking
        self._total_requests = 0
        self._total_request_time = 0.0
        self._failed_requests = 0

        logger.info(f"Initialized ElasticsearchSink: {self.config.url}")

    @property
    def client(self) -> AsyncElasticsearch:
        """Get Elasticsearch client instance"""
        if self._client is None:
            self._client = AsyncElasticsearch(
                self.config.url,
                api_key=self.config.api_key,
                request_timeout=self.config.timeout
            )
        return self._client

    @property
    def retry_on_conflict(self) -> int:
        return self.config.retry_on_conflict

    async def close(self) -> None:
        """Close the underlying transport"""
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as e:
                logger.warning(f"Error closing Elasticsearch client: {e}")
            self._client = None
            logger.info("Disconnected from Elasticsearch")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check cluster health.

        Returns:
            Health status information
        """
        try:
            start_time = time.time()
            health = await self.client.cluster.health()
            elapsed = time.time() - start_time

            return {
                "status": "healthy" if health.get("status") in ("green", "yellow") else "unhealthy",
                "cluster_status": health.get("status"),
                "cluster_name": health.get("cluster_name"),
                "response_time_ms": elapsed * 1000,
                "url": self.config.url
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "url": self.config.url
            }

    async def exists(self, index: str, doc_type: str, doc_id: str) -> bool:
        """Check whether a document is present. Raises on transport errors."""
        response = await self.client.exists(index=index, id=doc_id)
        return bool(response)

    async def create(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        body: Dict[str, Any]
    ) -> StorageResult:
        """Index a new document"""
        return await self._write(
            "create", index, doc_type, doc_id,
            lambda: self.client.index(index=index, id=doc_id, document=body)
        )

    async def update(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        body: Dict[str, Any],
        upsert: bool = False,
        retry_on_conflict: Optional[int] = None
    ) -> StorageResult:
        """
        Partially update a document.

        Args:
            index: Target index
            doc_type: Target type (informational)
            doc_id: Document id
            body: Fields to merge into the stored document
            upsert: Create the document from ``body`` when it is missing
            retry_on_conflict: Server-side retries on version conflicts

        Returns:
            Storage operation result
        """
        retries = self.retry_on_conflict if retry_on_conflict is None else retry_on_conflict
        return await self._write(
            "upsert" if upsert else "update", index, doc_type, doc_id,
            lambda: self.client.update(
                index=index,
                id=doc_id,
                doc=body,
                doc_as_upsert=upsert,
                retry_on_conflict=retries
            )
        )

    async def delete(self, index: str, doc_type: str, doc_id: str) -> StorageResult:
        """Delete a document. A missing document yields error_code NOT_FOUND."""
        return await self._write(
            "delete", index, doc_type, doc_id,
            lambda: self.client.delete(index=index, id=doc_id)
        )

    async def search(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a search request.

        Args:
            request: Mapping with ``index`` plus any of q, body, size, from, sort

        Returns:
            Raw response body as a dict
        """
        kwargs: Dict[str, Any] = {"index": request["index"]}
        for key, client_key in SEARCH_PASSTHROUGH_KEYS.items():
            if request.get(key) is not None:
                kwargs[client_key] = request[key]

        start_time = time.time()
        try:
            response = await self.client.search(**kwargs)
        except Exception:
            self._record_request(start_time, failed=True)
            raise
        self._record_request(start_time)

        body = getattr(response, "body", response)
        return dict(body)

    async def ensure_index(
        self,
        index: str,
        doc_type: str,
        properties: Dict[str, Any]
    ) -> bool:
        """
        Create ``index`` with ``properties`` unless it already exists.

        The check and the create are separate calls; two processes provisioning
        the same index at once may both try to create it, and the loser sees a
        resource_already_exists error which is treated as success.

        Returns:
            True if the index was created by this call
        """
        if await self.client.indices.exists(index=index):
            logger.debug(f"Index {index} already exists, skipping mapping")
            return False

        try:
            await self.client.indices.create(index=index)
        except Exception as e:
            if "resource_already_exists" in str(e):
                logger.info(f"Index {index} was created concurrently, skipping mapping")
                return False
            raise

        await self.client.indices.put_mapping(index=index, properties=properties)
        logger.info(f"Created index {index} with mapping for {doc_type}: {sorted(properties)}")
        return True

    async def _write(
        self,
        operation: str,
        index: str,
        doc_type: str,
        doc_id: str,
        request: Callable[[], Awaitable[Any]]
    ) -> StorageResult:
        start_time = time.time()
        async with self._write_slots:
            try:
                await request()
                processing_time = self._record_request(start_time)
                logger.debug(f"{operation} {index}/{doc_type}/{doc_id} in {processing_time:.2f}ms")
                return StorageResult.successful(operation, index, doc_id, processing_time)

            except NotFoundError as e:
                processing_time = self._record_request(start_time, failed=True)
                return StorageResult.failed_operation(
                    operation, index, doc_id, f"Document not found: {e}", processing_time,
                    error_code=StorageErrorCode.NOT_FOUND
                )

            except ConflictError as e:
                processing_time = self._record_request(start_time, failed=True)
                return StorageResult.failed_operation(
                    operation, index, doc_id, f"Version conflict: {e}", processing_time,
                    error_code=StorageErrorCode.CONFLICT
                )

            except Exception as e:
                processing_time = self._record_request(start_time, failed=True)
                error_msg = f"Failed to {operation} {index}/{doc_type}/{doc_id}: {e}"
                logger.error(error_msg)
                return StorageResult.failed_operation(
                    operation, index, doc_id, error_msg, processing_time,
                    error_details={"exception": type(e).__name__}
                )

    def _record_request(self, start_time: float, failed: bool = False) -> float:
        elapsed_ms = (time.time() - start_time) * 1000
        self._total_requests += 1
        self._total_request_time += elapsed_ms
        if failed:
            self._failed_requests += 1
        return elapsed_ms

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Get request counters and timings"""
        avg_time = self._total_request_time / self._total_requests if self._total_requests else 0.0
        return {
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
            "avg_request_time_ms": avg_time,
            "max_concurrent_writes": self.config.max_concurrent_writes,
        }
