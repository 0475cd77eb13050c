"""
Record Pipeline.

Turns a raw document payload into the body that gets indexed: filter,
include/exclude projection, then the descriptor's transform. The pipeline
never touches the raw payload it is given.
"""

import copy
import logging
from typing import Any, Dict, Optional

from ..models.reference import ReferenceDescriptor
from .events import ChangeEvent

logger = logging.getLogger(__name__)


def project(
    document: Dict[str, Any],
    include: Optional[frozenset] = None,
    exclude: Optional[frozenset] = None
) -> Dict[str, Any]:
    """Keep ``include`` fields (when set), then drop ``exclude`` fields."""
    if include is not None:
        document = {key: value for key, value in document.items() if key in include}
    if exclude:
        document = {key: value for key, value in document.items() if key not in exclude}
    return document


def apply(
    descriptor: ReferenceDescriptor,
    raw: Optional[Dict[str, Any]],
    parent: Optional[ChangeEvent] = None
) -> Optional[Dict[str, Any]]:
    """
    Run a document through the descriptor's pipeline.

    Args:
        descriptor: Reference describing the replicated collection
        raw: Document data as read from the store
        parent: Parent document event, for subcollection documents; the
            transform receives its payload

    Returns:
        The document to index, or None when the filter suppressed it
    """
    document = copy.deepcopy(raw) if raw else {}

    if descriptor.filter is not None and not descriptor.filter(document):
        return None

    document = project(document, descriptor.include, descriptor.exclude)

    if descriptor.transform is not None:
        parent_document = parent.payload if parent is not None else None
        document = descriptor.transform(document, parent_document)
        if not isinstance(document, dict):
            raise TypeError(
                f"Transform for {descriptor.collection} returned {type(document).__name__}, expected dict"
            )

    return document
