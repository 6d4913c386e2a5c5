"""Shared pytest fixtures and in-memory stand-ins for external services."""

from __future__ import annotations

import hashlib
import threading

import pytest

from ledgerkb.errors import LedgerSubmissionFailed, NotFound, UnreachableSource
from ledgerkb.index.manager import IndexManager
from ledgerkb.ingest.chunker import Chunker
from ledgerkb.ingest.fetcher import FetchedDocument
from ledgerkb.ledger.client import LedgerClient
from ledgerkb.ledger.models import Contribution
from ledgerkb.orchestrator import Orchestrator

CREDENTIAL = "0x" + "11" * 32
OTHER_CREDENTIAL = "0x" + "22" * 32


# ------------------------------------------------------------------
# Stand-ins
# ------------------------------------------------------------------


class HashEmbedder:
    """Deterministic 8-dimensional embedder: identical text → identical vector."""

    model = "test/hash-embedding"
    dimensions = 8

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._vector(t) for t in texts]

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text])[0]

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 for b in digest[: self.dimensions]]


class StaticFetcher:
    """Serve documents from a dict; unknown URLs are unreachable."""

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})

    def fetch(self, url: str) -> FetchedDocument:
        if url not in self.pages:
            raise UnreachableSource(url, "connection refused")
        return FetchedDocument(url=url, content_type="text/plain", text=self.pages[url])


class InMemoryLedger:
    """Ledger with sequential ids from 1, mirroring the contract's behaviour."""

    def __init__(self) -> None:
        self.contributions: list[Contribution] = []
        self.fail_submissions = False
        self._lock = threading.Lock()
        self._clock = 1_700_000_000

    contributor_address = staticmethod(LedgerClient.contributor_address)

    @staticmethod
    def address_for(credential: str) -> str:
        return "0x" + hashlib.sha256(credential.encode()).hexdigest()[:40]

    def submit_contribution(self, credential: str, source_url: str, tags: list[str]) -> int:
        if self.fail_submissions:
            raise LedgerSubmissionFailed("Transaction 0xdead reverted.", tx_hash="0xdead")
        with self._lock:
            self._clock += 12
            contribution = Contribution(
                id=len(self.contributions) + 1,
                contributor_address=self.address_for(credential),
                timestamp=self._clock,
                source_url=source_url,
                tags=tuple(tags),
            )
            self.contributions.append(contribution)
            return contribution.id

    def get_contribution(self, contribution_id: int) -> Contribution:
        if not 1 <= contribution_id <= len(self.contributions):
            raise NotFound(contribution_id)
        return self.contributions[contribution_id - 1]

    def get_total_contributions(self) -> int:
        return len(self.contributions)

    def get_contributions_by_contributor(self, address: str) -> list[Contribution]:
        return [c for c in self.contributions if c.contributor_address == address]

    def get_all_contributions(self) -> list[Contribution]:
        return list(self.contributions)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def index(tmp_path, embedder) -> IndexManager:
    return IndexManager(tmp_path / "vectorStore", embedder)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def fetcher() -> StaticFetcher:
    return StaticFetcher()


@pytest.fixture
def orchestrator(fetcher, embedder, index, ledger) -> Orchestrator:
    return Orchestrator(
        fetcher=fetcher,
        chunker=Chunker(chunk_size=200, chunk_overlap=40),
        embedder=embedder,
        index=index,
        ledger=ledger,
        embed_retries=2,
        retry_backoff=0.0,
        sleep=lambda _: None,
    )
