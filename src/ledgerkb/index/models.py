"""Value types for the persisted vector index."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field


@dataclass(frozen=True)
class IndexEntry:
    """One embedded chunk and the URL it came from."""

    source_url: str
    chunk_text: str
    embedding: tuple[float, ...]

    @property
    def dimensions(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class IndexSnapshot:
    """The full index contents, in insertion order.

    Entry position is the tie-breaker for equal distances, so ``merged``
    always appends and never reorders.

    Attributes:
        entries: All entries, oldest first.
        embedding_model: Model the vectors were produced with.
    """

    entries: tuple[IndexEntry, ...] = ()
    embedding_model: str = ""
    dimensions: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        dims = {e.dimensions for e in self.entries}
        if len(dims) > 1:
            raise ValueError(f"Index entries have mixed dimensions: {sorted(dims)}")
        object.__setattr__(self, "dimensions", dims.pop() if dims else 0)

    def __len__(self) -> int:
        return len(self.entries)

    def merged(self, entries: list[IndexEntry]) -> IndexSnapshot:
        """Return a new snapshot with *entries* appended (no deduplication)."""
        return IndexSnapshot(
            entries=self.entries + tuple(entries),
            embedding_model=self.embedding_model,
        )

    def source_urls(self) -> Counter[str]:
        """Chunk count per source URL."""
        return Counter(e.source_url for e in self.entries)


@dataclass
class SearchHit:
    """A similarity-search result.

    Attributes:
        entry: The matched index entry.
        distance: L2 distance to the query vector (lower = more similar).
    """

    entry: IndexEntry
    distance: float
