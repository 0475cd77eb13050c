"""
Core data models for firesearch

Pydantic models for configuration and storage results, plus the
reference descriptors that drive replication.
"""

from .storage import StorageResult, StorageErrorCode
from .config import (
    ElasticsearchConfig, FirestoreConfig, QueryBridgeConfig, ReplicationConfig, GlobalSettings
)
from .reference import (
    ReferenceDescriptor, QueryAugmenter, RecordFilter, RecordTransformer, NameResolver
)

__all__ = [
    # Storage
    "StorageResult",
    "StorageErrorCode",

    # Configuration
    "ElasticsearchConfig",
    "FirestoreConfig",
    "QueryBridgeConfig",
    "ReplicationConfig",
    "GlobalSettings",

    # References
    "ReferenceDescriptor",
    "QueryAugmenter",
    "RecordFilter",
    "RecordTransformer",
    "NameResolver",
]
