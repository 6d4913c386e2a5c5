"""Persisted vector index — value types and the index manager."""

from ledgerkb.index.manager import IndexManager
from ledgerkb.index.models import IndexEntry, IndexSnapshot, SearchHit

__all__ = ["IndexEntry", "IndexManager", "IndexSnapshot", "SearchHit"]
