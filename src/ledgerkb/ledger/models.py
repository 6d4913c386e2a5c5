"""Domain model for ledger-recorded contributions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Contribution:
    """One confirmed contribution, as recorded by the ledger.

    Attributes:
        id: Ledger-assigned id, starting at 1.
        contributor_address: Checksummed address of the submitting account.
        timestamp: Block timestamp (seconds since epoch).
        source_url: URL of the contributed document.
        tags: Tags in submission order; may be empty.
    """

    id: int
    contributor_address: str
    timestamp: int
    source_url: str
    tags: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contributorAddress": self.contributor_address,
            "timestamp": self.timestamp,
            "sourceURL": self.source_url,
            "tags": list(self.tags),
        }
