"""
Reference descriptors for replicated collections.

A reference describes one Firestore collection (optionally with a per-document
subcollection) and how its documents land in Elasticsearch. Descriptors are
static data; the callables they hold are the only per-collection logic.
"""

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Optional, Protocol, Union,
    runtime_checkable
)

if TYPE_CHECKING:
    from ..sync.events import ChangeEvent, EventBatch


@runtime_checkable
class QueryAugmenter(Protocol):
    """Adds predicates (where, order_by, limit) to a store query."""

    def __call__(self, query: Any) -> Any: ...


@runtime_checkable
class RecordFilter(Protocol):
    """Returns False to suppress a document entirely."""

    def __call__(self, document: Dict[str, Any]) -> bool: ...


@runtime_checkable
class RecordTransformer(Protocol):
    """Reshapes an already projected document, optionally using its parent document."""

    def __call__(
        self,
        document: Dict[str, Any],
        parent: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]: ...


@runtime_checkable
class NameResolver(Protocol):
    """Computes an index or type name from the batch being processed."""

    def __call__(self, batch: 'EventBatch', parent: Optional['ChangeEvent']) -> str: ...


def _to_fields(value: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(value)


@dataclass(frozen=True)
class ReferenceDescriptor:
    """
    Replication target for one collection.

    Attributes:
        collection: Path of the watched collection
        index: Target index name, or a resolver computing it per batch
        type: Target type name, or a resolver computing it per batch
        subcollection: Child collection watched under every parent document
        builder: Augments the root subscription query
        sub_builder: Augments each per-parent subcollection query
        include: Allow-list of fields kept in the indexed document
        exclude: Deny-list of fields, applied after include
        filter: Predicate; False suppresses the record
        transform: Post-projection enrichment
        mappings: Field mappings provisioned before the first write
    """

    collection: str
    index: Union[str, NameResolver]
    type: Union[str, NameResolver]
    subcollection: Optional[str] = None
    builder: Optional[QueryAugmenter] = None
    sub_builder: Optional[QueryAugmenter] = None
    include: Optional[FrozenSet[str]] = None
    exclude: Optional[FrozenSet[str]] = None
    filter: Optional[RecordFilter] = None
    transform: Optional[RecordTransformer] = None
    mappings: Optional[Dict[str, Any]] = field(default=None, hash=False, compare=False)

    def __post_init__(self):
        if not self.collection or self.collection.strip('/') != self.collection:
            raise ValueError(f'Invalid collection path: {self.collection!r}')
        if self.subcollection is not None and (not self.subcollection or '/' in self.subcollection):
            raise ValueError(f'Invalid subcollection name: {self.subcollection!r}')
        if self.mappings is not None and not isinstance(self.index, str):
            raise ValueError('mappings require a literal index name')
        object.__setattr__(self, 'include', _to_fields(self.include))
        object.__setattr__(self, 'exclude', _to_fields(self.exclude))

    @property
    def key(self) -> str:
        """Identity of the descriptor within a catalog"""
        index = self.index if isinstance(self.index, str) else getattr(self.index, '__name__', repr(self.index))
        sub = f"/*/{self.subcollection}" if self.subcollection else ""
        return f"{self.collection}{sub} -> {index}"

    @property
    def is_subcollection(self) -> bool:
        return self.subcollection is not None

    def subcollection_path(self, parent_id: str) -> str:
        """Path of the child collection under one parent document"""
        if self.subcollection is None:
            raise ValueError(f'{self.collection} has no subcollection')
        return f"{self.collection}/{parent_id}/{self.subcollection}"

    def resolve_index(self, batch: 'EventBatch', parent: Optional['ChangeEvent'] = None) -> str:
        return _resolve(self.index, batch, parent)

    def resolve_type(self, batch: 'EventBatch', parent: Optional['ChangeEvent'] = None) -> str:
        return _resolve(self.type, batch, parent)

    def describe(self) -> Dict[str, Any]:
        """Summary used by logs and the CLI"""
        return {
            "collection": self.collection,
            "subcollection": self.subcollection,
            "index": self.index if isinstance(self.index, str) else "<computed>",
            "type": self.type if isinstance(self.type, str) else "<computed>",
            "include": sorted(self.include) if self.include else [],
            "exclude": sorted(self.exclude) if self.exclude else [],
            "filter": self.filter is not None,
            "transform": self.transform is not None,
            "mappings": sorted(self.mappings) if self.mappings else [],
        }


def _resolve(value: Union[str, NameResolver], batch: 'EventBatch', parent: Optional['ChangeEvent']) -> str:
    if isinstance(value, str):
        return value
    name = value(batch, parent)
    if not isinstance(name, str) or not name:
        raise ValueError(f'Name resolver returned an invalid name: {name!r}')
    return name
