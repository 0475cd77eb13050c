"""
Reference catalog.

Collections listed here are replicated into Elasticsearch and become
searchable through the query bridge.
"""

from typing import Any, Dict, List, Optional

from core.models.reference import ReferenceDescriptor


def header_value(headers: Optional[List[Dict[str, Any]]], name: str) -> Optional[str]:
    """Value of the first header called ``name`` in a Gmail-style header list"""
    for header in headers or []:
        if isinstance(header, dict) and header.get('name') == name:
            return header.get('value')
    return None


def email_from_headers(document: Dict[str, Any], parent: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Derive ``from`` out of ``payload.headers`` and drop the raw payload"""
    document = dict(document)
    payload = document.pop('payload', None) or {}
    sender = header_value(payload.get('headers'), 'From')
    if sender is not None:
        document['from'] = sender
    return document


REFERENCES: List[ReferenceDescriptor] = [
    ReferenceDescriptor(
        collection='emails',
        index='emails',
        type='emails',
        include=['snippet', 'from', 'id', 'payload'],
        transform=email_from_headers,
    ),
]
