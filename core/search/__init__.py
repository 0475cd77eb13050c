"""
Search package for firesearch.

Answers search requests written into a Firestore control collection.
"""

from .bridge import QueryBridge, QueryRequest, InvalidQueryRequest, parse_request, rekey_hits

__all__ = [
    "QueryBridge",
    "QueryRequest",
    "InvalidQueryRequest",
    "parse_request",
    "rekey_hits",
]
