"""Pending document writes.

Writes are plain values so they can be produced by pure functions and
inspected in tests before anything is sent to the backend. Field data uses
the stored (camelCase) field names and plain Python values; encoding happens
in the client at commit time.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SetWrite:
    """Create or fully replace a document."""

    collection: str
    doc_id: str
    data: dict


@dataclass(frozen=True)
class UpdateWrite:
    """Update the given fields of an existing document.

    Fields listed in ``delete_fields`` are removed from the document.
    """

    collection: str
    doc_id: str
    data: dict
    delete_fields: tuple[str, ...] = field(default=())

    @property
    def field_paths(self) -> list[str]:
        return [*self.data.keys(), *self.delete_fields]


@dataclass(frozen=True)
class DeleteWrite:
    """Delete a document."""

    collection: str
    doc_id: str


Write = SetWrite | UpdateWrite | DeleteWrite


def documents_touched(writes: list[Write]) -> set[tuple[str, str]]:
    """Return the (collection, doc_id) pairs a batch of writes touches."""
    return {(w.collection, w.doc_id) for w in writes}
