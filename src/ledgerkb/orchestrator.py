"""Contribution Orchestrator — fetch → chunk → embed → index → ledger.

State machine::

    Fetching → Chunking → Embedding → Indexing → Submitting → Confirmed
        \\__________\\__________\\__________\\___________\\__→ Failed(reason)

Ordering contract:
  * Nothing is written before Indexing. Failures up to that point raise a
    ``SubmissionAborted`` subclass and leave index and ledger unchanged.
  * The index update is durably persisted before the ledger transaction
    is sent. If the ledger step fails, ``IndexedNotRecorded`` is raised and
    the new index entries stay in place (orphans). There is no rollback.
  * The contributor credential is checked before Fetching.
  * Cancellation is honoured up to, but not after, the ledger submission.

Documents that yield no text skip Embedding and Indexing and are still
recorded on the ledger. If that ledger step fails,
``NotRecorded`` (a ``SubmissionAborted``) is raised since nothing was indexed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from ledgerkb.errors import (
    EmbeddingUnavailable,
    IndexedNotRecorded,
    LedgerSubmissionFailed,
    LedgerUnavailable,
    NotRecorded,
    SubmissionCancelled,
)
from ledgerkb.index.manager import IndexManager
from ledgerkb.index.models import IndexEntry
from ledgerkb.ingest.chunker import Chunker
from ledgerkb.ingest.embedder import Embedder
from ledgerkb.ingest.fetcher import Fetcher
from ledgerkb.ledger.client import LedgerClient

logger = logging.getLogger(__name__)


class SubmissionState(str, Enum):
    FETCHING = "fetching"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class SubmissionRequest:
    """Input of one submission."""

    credential: str
    source_url: str
    tags: list[str] = field(default_factory=list)

    def __repr__(self) -> str:
        # Never render the credential.
        return f"SubmissionRequest(source_url={self.source_url!r}, tags={self.tags!r})"


@dataclass
class Submission:
    """Progress and outcome of one submission.

    Attributes:
        source_url: URL being contributed.
        tags: Tags recorded with the contribution.
        state: Current state; ``FAILED`` or ``CONFIRMED`` once finished.
        history: Every state entered, in order.
        chunk_count: Chunks produced from the document.
        entry_count: Entries written to the index.
        contribution_id: Ledger id once confirmed (0 if it could not be resolved).
        error: The failure reason when ``state`` is ``FAILED``.
    """

    source_url: str
    tags: list[str] = field(default_factory=list)
    state: SubmissionState = SubmissionState.FETCHING
    history: list[SubmissionState] = field(default_factory=list)
    chunk_count: int = 0
    entry_count: int = 0
    contribution_id: int | None = None
    error: Exception | None = None

    @property
    def indexed(self) -> bool:
        return self.entry_count > 0

    @property
    def succeeded(self) -> bool:
        return self.state is SubmissionState.CONFIRMED


TransitionCallback = Callable[[Submission], None]


class Orchestrator:
    """Drive one or many submissions through the pipeline.

    Args:
        fetcher: Retrieves the document.
        chunker: Splits document text.
        embedder: Embeds chunks.
        index: Index manager; shared by all submissions.
        ledger: Ledger client.
        embed_retries: Extra attempts after an ``EmbeddingUnavailable``.
        retry_backoff: Base delay in seconds; doubles on every retry.
        max_workers: Thread pool size for ``submit_many``.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        chunker: Chunker,
        embedder: Embedder,
        index: IndexManager,
        ledger: LedgerClient,
        embed_retries: int = 2,
        retry_backoff: float = 1.0,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._ledger = ledger
        self.embed_retries = embed_retries
        self.retry_backoff = retry_backoff
        self.max_workers = max_workers
        self._sleep = sleep

    def submit(
        self,
        credential: str,
        source_url: str,
        tags: list[str] | None = None,
        *,
        cancel: threading.Event | None = None,
        on_transition: TransitionCallback | None = None,
    ) -> int:
        """Run one submission and return the ledger-assigned contribution id.

        Raises:
            SubmissionAborted: Invalid credential, fetch, embed or index
                write failed, the submission was cancelled, or the ledger
                step failed for a document with no text; nothing was indexed.
            IndexedNotRecorded: Content is indexed but the ledger step failed.
        """
        submission = Submission(source_url=source_url, tags=list(tags or []))
        self._process(submission, credential, cancel, on_transition)
        if submission.error is not None:
            raise submission.error
        return submission.contribution_id  # type: ignore[return-value]

    def submit_many(
        self,
        requests: list[SubmissionRequest],
        on_transition: TransitionCallback | None = None,
    ) -> list[Submission]:
        """Run *requests* concurrently; failures are captured, not raised.

        Returns one ``Submission`` per request, in request order.
        """
        submissions = [Submission(source_url=r.source_url, tags=list(r.tags)) for r in requests]

        def _worker(pair: tuple[Submission, SubmissionRequest]) -> Submission:
            submission, request = pair
            self._process(submission, request.credential, None, on_transition)
            return submission

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(_worker, zip(submissions, requests)))

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _process(
        self,
        submission: Submission,
        credential: str,
        cancel: threading.Event | None,
        on_transition: TransitionCallback | None,
    ) -> None:
        """Run the pipeline, recording any failure on *submission*."""
        try:
            self._run(submission, credential, cancel, on_transition)
        except Exception as exc:
            failed_during = submission.state
            submission.error = exc
            self._enter(submission, SubmissionState.FAILED, on_transition)
            logger.warning(
                "Submission of %s failed during %s: %s",
                submission.source_url,
                failed_during.value,
                exc,
            )

    def _run(
        self,
        submission: Submission,
        credential: str,
        cancel: threading.Event | None,
        on_transition: TransitionCallback | None,
    ) -> None:
        url = submission.source_url
        # A malformed key must fail before anything is indexed.
        self._ledger.contributor_address(credential)

        self._enter(submission, SubmissionState.FETCHING, on_transition)
        _check_cancel(cancel)
        document = self._fetcher.fetch(url)

        self._enter(submission, SubmissionState.CHUNKING, on_transition)
        chunks = self._chunker.split(document.text)
        submission.chunk_count = len(chunks)

        if chunks:
            self._enter(submission, SubmissionState.EMBEDDING, on_transition)
            _check_cancel(cancel)
            vectors = self._embed_with_retry(chunks)
            try:
                entries = [
                    IndexEntry(source_url=url, chunk_text=text, embedding=tuple(vector))
                    for text, vector in zip(chunks, vectors, strict=True)
                ]
            except ValueError as exc:
                raise EmbeddingUnavailable(
                    f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks"
                ) from exc

            self._enter(submission, SubmissionState.INDEXING, on_transition)
            _check_cancel(cancel)
            with self._index.exclusive():
                if self._index.exists():
                    self._index.merge_into(entries)
                else:
                    self._index.create_from(entries)
            submission.entry_count = len(entries)
        else:
            logger.info("No text extracted from %s; skipping indexing", url)

        # Last point at which cancellation is honoured.
        if cancel is not None and cancel.is_set():
            if submission.indexed:
                raise IndexedNotRecorded(url, submission.entry_count, "cancelled before submission")
            raise SubmissionCancelled(f"Submission of '{url}' was cancelled.")

        self._enter(submission, SubmissionState.SUBMITTING, on_transition)
        try:
            contribution_id = self._ledger.submit_contribution(credential, url, submission.tags)
        except (LedgerSubmissionFailed, LedgerUnavailable) as exc:
            if not submission.indexed:
                raise NotRecorded(url, str(exc)) from exc
            raise IndexedNotRecorded(url, submission.entry_count, str(exc)) from exc

        submission.contribution_id = contribution_id
        self._enter(submission, SubmissionState.CONFIRMED, on_transition)
        logger.info("Contribution %d recorded for %s", contribution_id, url)

    def _embed_with_retry(self, chunks: list[str]) -> list[list[float]]:
        attempt = 0
        while True:
            try:
                return self._embedder.embed(chunks)
            except EmbeddingUnavailable as exc:
                if attempt >= self.embed_retries:
                    raise
                delay = self.retry_backoff * (2**attempt)
                attempt += 1
                logger.warning(
                    "Embedding failed (%s); retry %d/%d in %.1fs",
                    exc,
                    attempt,
                    self.embed_retries,
                    delay,
                )
                self._sleep(delay)

    @staticmethod
    def _enter(
        submission: Submission,
        state: SubmissionState,
        on_transition: TransitionCallback | None,
    ) -> None:
        submission.state = state
        submission.history.append(state)
        logger.debug("%s → %s", submission.source_url, state.value)
        if on_transition is not None:
            on_transition(submission)


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise SubmissionCancelled("Submission was cancelled.")
