"""KnowledgeBase — the entry points exposed to the HTTP layer and the CLI.

    submit(credential, url, tags)    → contribution id
    list_all() / get_total() / get_by_id(id) / get_by_contributor(address)
    similarity_search(query, k)      → chunk texts, most similar first
    audit()                          → index/ledger coverage report

Read paths go straight to the ledger client or the index manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ledgerkb.config import LedgerKBConfig
from ledgerkb.index.manager import IndexManager
from ledgerkb.index.models import SearchHit
from ledgerkb.ingest.chunker import Chunker
from ledgerkb.ingest.embedder import Embedder, EmbeddingConfig
from ledgerkb.ingest.fetcher import Fetcher
from ledgerkb.ledger.client import LedgerClient
from ledgerkb.ledger.models import Contribution
from ledgerkb.orchestrator import Orchestrator, Submission, SubmissionRequest


@dataclass
class CoverageReport:
    """Comparison of index contents with ledger records.

    Attributes:
        orphan_urls: URLs with index entries but no ledger record, with
            their chunk counts.
        unindexed_urls: URLs recorded on the ledger with no index entries.
        indexed_url_count: Distinct URLs present in the index.
        contribution_count: Contributions recorded on the ledger.
    """

    orphan_urls: dict[str, int] = field(default_factory=dict)
    unindexed_urls: list[str] = field(default_factory=list)
    indexed_url_count: int = 0
    contribution_count: int = 0

    @property
    def consistent(self) -> bool:
        return not self.orphan_urls and not self.unindexed_urls


class KnowledgeBase:
    """Facade over the orchestrator, the index manager and the ledger client."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        index: IndexManager,
        ledger: LedgerClient,
        default_top_k: int = 2,
    ) -> None:
        self.orchestrator = orchestrator
        self.index = index
        self.ledger = ledger
        self.default_top_k = default_top_k

    @classmethod
    def from_config(cls, cfg: LedgerKBConfig, base_dir: Path | None = None) -> KnowledgeBase:
        """Wire every component from *cfg*; relative paths resolve against *base_dir*."""
        root = base_dir or Path.cwd()
        index_dir = Path(cfg.index.directory)
        if not index_dir.is_absolute():
            index_dir = root / index_dir

        embedder = Embedder(
            EmbeddingConfig(
                model=cfg.embedding.model,
                batch_size=cfg.embedding.batch_size,
                timeout=cfg.embedding.timeout,
            )
        )
        index = IndexManager(index_dir, embedder)
        ledger = LedgerClient.from_config(cfg.ledger, base_dir=root)
        orchestrator = Orchestrator(
            fetcher=Fetcher(
                timeout=cfg.fetch.timeout,
                max_bytes=cfg.fetch.max_bytes,
                max_redirects=cfg.fetch.max_redirects,
                allow_private=cfg.fetch.allow_private,
            ),
            chunker=Chunker(cfg.chunker.chunk_size, cfg.chunker.chunk_overlap),
            embedder=embedder,
            index=index,
            ledger=ledger,
            embed_retries=cfg.orchestrator.embed_retries,
            retry_backoff=cfg.orchestrator.retry_backoff,
            max_workers=cfg.orchestrator.max_workers,
        )
        return cls(orchestrator, index, ledger, default_top_k=cfg.search.top_k)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def submit(self, credential: str, source_url: str, tags: list[str] | None = None, **kwargs) -> int:
        return self.orchestrator.submit(credential, source_url, tags, **kwargs)

    def submit_many(self, requests: list[SubmissionRequest], **kwargs) -> list[Submission]:
        return self.orchestrator.submit_many(requests, **kwargs)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def list_all(self) -> list[Contribution]:
        return self.ledger.get_all_contributions()

    def get_total(self) -> int:
        return self.ledger.get_total_contributions()

    def get_by_id(self, contribution_id: int) -> Contribution:
        return self.ledger.get_contribution(contribution_id)

    def get_by_contributor(self, address: str) -> list[Contribution]:
        return self.ledger.get_contributions_by_contributor(address)

    def similarity_search(self, query: str, k: int | None = None) -> list[str]:
        return self.index.similarity_search(query, k or self.default_top_k)

    def search(self, query: str, k: int | None = None) -> list[SearchHit]:
        """Like ``similarity_search`` but keeps source URL and distance."""
        return self.index.search(query, k or self.default_top_k)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def audit(self) -> CoverageReport:
        """Compare indexed URLs with ledger-recorded URLs. Read-only."""
        indexed = self.index.source_urls()
        contributions = self.ledger.get_all_contributions()
        recorded = {c.source_url for c in contributions}

        orphans = {url: n for url, n in sorted(indexed.items()) if url not in recorded}
        # Contributions whose document produced no text are expected here.
        unindexed = sorted(recorded - set(indexed))
        return CoverageReport(
            orphan_urls=orphans,
            unindexed_urls=unindexed,
            indexed_url_count=len(indexed),
            contribution_count=len(contributions),
        )
