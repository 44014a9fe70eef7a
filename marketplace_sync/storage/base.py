"""
Record store interface consumed by the reconciler and the batch importer.

The store owns identity and physical layout. The core relies on two
guarantees only: ``find_child`` sees earlier ``create_child`` calls of the
same session, and removed records no longer appear in ``list_children`` or
``find_descendants``. Writes are not transactional; each one is observable on
its own.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Record:
    """Handle to one record in the store.

    Attributes:
        id:   Store-assigned identity, stable for the lifetime of the record.
        name: Record name, unique among its siblings.
    """

    id: str
    name: str


class RecordStore(ABC):
    """Hierarchical record store."""

    @abstractmethod
    def root(self) -> Record:
        """The storage root under which vendors live."""

    @abstractmethod
    def find_child(self, parent: Record, name: str) -> Optional[Record]:
        """Child of *parent* named *name*, or None."""

    @abstractmethod
    def create_child(self, parent: Record, name: str, kind: str) -> Record:
        """Create a child of kind *kind* (plus its auto-created children).

        Raises:
            StoreWriteFailure: *name* is already taken under *parent*.
            SchemaError: *kind* is unknown or abstract.
        """

    @abstractmethod
    def get_property(self, record: Record, key: str) -> Any:
        """Stored value of *key*, or None when absent."""

    @abstractmethod
    def get_properties(self, record: Record) -> dict[str, Any]:
        """Copy of all properties stored on *record*."""

    @abstractmethod
    def set_property(self, record: Record, key: str, value: Any) -> None:
        """Write *key*. Writing an unchanged value is allowed and harmless.

        Raises:
            SchemaError: the record's kind does not declare *key*.
            StoreWriteFailure: the record no longer exists.
        """

    @abstractmethod
    def list_children(self, parent: Record, kind: Optional[str] = None) -> list[Record]:
        """Direct children in creation order, optionally filtered by kind.

        The filter matches subkinds too: ``"Version"`` selects released,
        prereleased and development versions.
        """

    @abstractmethod
    def find_descendants(self, parent: Record, kind: str) -> list[Record]:
        """All descendants of *parent* that are instances of *kind*."""

    @abstractmethod
    def remove(self, record: Record) -> None:
        """Remove *record* and its whole subtree."""

    @abstractmethod
    def get_kind(self, record: Record) -> str:
        """Kind of *record*."""

    @abstractmethod
    def change_kind(self, record: Record, kind: str) -> None:
        """Reclassify *record* (e.g. a version promoted from dev to stable)."""

    @abstractmethod
    def has_record(self, record: Record) -> bool:
        """True while *record* is still part of the tree."""
