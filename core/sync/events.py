"""
Change Event Models.

Defines change kinds and the data structures delivered by document store
change feeds to the replication engine.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import uuid


class ChangeKind(Enum):
    """Document transitions reported by a change feed"""
    ADDED = "added"         # Document entered the query result set
    MODIFIED = "modified"   # Document changed while in the result set
    REMOVED = "removed"     # Document left the result set or was deleted

    @classmethod
    def from_name(cls, name: str) -> 'ChangeKind':
        """Parse store-specific names such as 'ADDED' or 'added'"""
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(f"Unknown change kind: {name}") from None


class ChangeEvent(BaseModel):
    """
    One document transition observed on a change feed.

    ``payload`` holds the document data for ADDED and MODIFIED events.
    ``parent_payload`` is only set for events coming from a subcollection
    subscription and carries the parent document's data as it was when the
    subscription was opened. ``reference`` is the store's opaque handle to
    the document, used when something has to be written back.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: ChangeKind
    document_id: str
    path: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    parent_payload: Optional[Dict[str, Any]] = None
    reference: Optional[Any] = Field(default=None, exclude=True, repr=False)

    @field_validator('document_id')
    @classmethod
    def validate_document_id(cls, v: str) -> str:
        """Document ids are non-empty path segments"""
        if not v or '/' in v:
            raise ValueError(f'Invalid document id: {v!r}')
        return v

    @model_validator(mode='after')
    def validate_payload(self) -> 'ChangeEvent':
        """ADDED and MODIFIED events always carry document data"""
        if self.kind is not ChangeKind.REMOVED and self.payload is None:
            self.payload = {}
        return self

    @classmethod
    def added(cls, document_id: str, payload: Dict[str, Any], **kwargs) -> 'ChangeEvent':
        return cls(kind=ChangeKind.ADDED, document_id=document_id, payload=payload, **kwargs)

    @classmethod
    def modified(cls, document_id: str, payload: Dict[str, Any], **kwargs) -> 'ChangeEvent':
        return cls(kind=ChangeKind.MODIFIED, document_id=document_id, payload=payload, **kwargs)

    @classmethod
    def removed(cls, document_id: str, **kwargs) -> 'ChangeEvent':
        return cls(kind=ChangeKind.REMOVED, document_id=document_id, **kwargs)

    def with_parent(self, parent: Optional['ChangeEvent']) -> 'ChangeEvent':
        """Copy of this event with the parent document data attached"""
        if parent is None:
            return self
        return self.model_copy(update={"parent_payload": parent.payload})

    def __str__(self) -> str:
        """String representation for logging"""
        location = self.path or self.document_id
        return f"{self.kind.value.upper()}: {location}"


class EventBatch(BaseModel):
    """
    Ordered batch of changes delivered by one snapshot of one subscription.

    Events keep the order the store assigned; nothing is deduplicated.
    """

    batch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subscription_id: str
    events: List[ChangeEvent] = Field(default_factory=list)
    read_time: datetime = Field(default_factory=datetime.now)

    @property
    def event_count(self) -> int:
        """Number of events in batch"""
        return len(self.events)

    def get_events_by_kind(self, kind: ChangeKind) -> List[ChangeEvent]:
        """Get all events of a specific kind from the batch"""
        return [event for event in self.events if event.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "batch_id": self.batch_id,
            "subscription_id": self.subscription_id,
            "event_count": self.event_count,
            "read_time": self.read_time.isoformat(),
            "event_kinds": [event.kind.value for event in self.events],
            "document_ids": [event.document_id for event in self.events],
        }
