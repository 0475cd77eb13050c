"""
Storage package for firesearch.

Provides the Elasticsearch search sink and the Firestore change feed.
"""

from .client import ElasticsearchSink
from .documents import FirestoreChangeFeed

__all__ = [
    "ElasticsearchSink",
    "FirestoreChangeFeed",
]
