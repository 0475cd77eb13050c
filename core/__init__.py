"""
firesearch core package

Replication of Firestore change feeds into Elasticsearch, and a search
bridge that answers queries written into a Firestore control collection.
"""

__version__ = "1.0.0"

from .models import ReferenceDescriptor, StorageResult, ReplicationConfig

__all__ = [
    "ReferenceDescriptor",
    "StorageResult",
    "ReplicationConfig",
]
