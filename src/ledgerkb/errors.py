"""Error taxonomy for the indexing and provenance core.

Two families matter to callers of ``submit``:

* ``SubmissionAborted`` — raised before any index or ledger mutation.
  Nothing happened; resubmitting is always safe.
* ``IndexedNotRecorded`` — the index was updated but the ledger submission
  failed. The orphaned entries stay in the index.

Read paths surface ``NotFound`` / ``LedgerUnavailable`` / ``IndexUnavailable``
verbatim.
"""

from __future__ import annotations


class LedgerKBError(Exception):
    """Base class for all ledgerkb errors."""


# ---------------------------------------------------------------------------
# Pre-mutation failures ("nothing happened")
# ---------------------------------------------------------------------------


class SubmissionAborted(LedgerKBError):
    """A submission failed before the index or the ledger was touched."""

    stage = "unknown"


class UnreachableSource(SubmissionAborted):
    """The source URL could not be reached or retrieved."""

    stage = "fetching"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Source '{url}' is unreachable: {reason}")
        self.url = url
        self.reason = reason


class EmbeddingUnavailable(SubmissionAborted):
    """The embedding provider failed, timed out or rate-limited the request."""

    stage = "embedding"


class IndexWriteFailed(SubmissionAborted):
    """The merged snapshot could not be persisted; the previous one is intact."""

    stage = "indexing"


class SubmissionCancelled(SubmissionAborted):
    """The caller cancelled the submission before it reached the ledger."""

    stage = "cancelled"


class InvalidCredential(SubmissionAborted):
    """The contributor credential is not a usable private key."""

    stage = "validating"


class NotRecorded(SubmissionAborted):
    """The ledger submission failed for a document that produced no index entries.

    Attributes:
        source_url: URL whose contribution was not recorded.
    """

    stage = "submitting"

    def __init__(self, source_url: str, reason: str) -> None:
        super().__init__(f"'{source_url}' was not recorded on the ledger: {reason}")
        self.source_url = source_url


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class IndexUnavailable(LedgerKBError):
    """No readable snapshot exists, so similarity search cannot run."""


class IndexCorrupted(LedgerKBError):
    """A snapshot is present but cannot be read or has an unknown format."""


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerError(LedgerKBError):
    """Base class for ledger client errors."""


class LedgerSubmissionFailed(LedgerError):
    """The transaction was rejected, reverted, or never confirmed.

    Attributes:
        tx_hash: Hash of the sent transaction, or None if it was never sent.
            A transaction that timed out waiting for confirmation may still
            be included later.
    """

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class LedgerUnavailable(LedgerError):
    """The ledger endpoint did not answer within the configured timeout."""


class NotFound(LedgerError):
    """No contribution exists for the requested id."""

    def __init__(self, contribution_id: int) -> None:
        super().__init__(f"Contribution {contribution_id} does not exist.")
        self.contribution_id = contribution_id


class ContributionIdUnresolved(UserWarning):
    """The transaction confirmed but no ContributionAdded event was found."""


# ---------------------------------------------------------------------------
# Post-index failure ("indexed, not recorded")
# ---------------------------------------------------------------------------


class IndexedNotRecorded(LedgerKBError):
    """Content was indexed but the ledger submission did not succeed.

    Attributes:
        source_url: URL whose chunks are now orphaned in the index.
        entry_count: Number of index entries written for this submission.
    """

    stage = "submitting"

    def __init__(self, source_url: str, entry_count: int, reason: str) -> None:
        super().__init__(
            f"'{source_url}' was indexed ({entry_count} entries) "
            f"but not recorded on the ledger: {reason}"
        )
        self.source_url = source_url
        self.entry_count = entry_count
