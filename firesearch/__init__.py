"""
firesearch - Firestore to Elasticsearch replication.

Replicates Firestore collections (and per-document subcollections) into
Elasticsearch indices, and answers search requests that clients write into a
Firestore control collection.
"""

from core import __version__
from core.models.reference import ReferenceDescriptor
from core.sync.engine import ReplicationEngine

__all__ = [
    "ReferenceDescriptor",
    "ReplicationEngine",
    "__version__",
]
