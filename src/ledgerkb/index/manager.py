"""Vector Index Manager — sqlite-vec snapshot with atomic persist.

Layout of the index directory::

    <directory>/index.db      the snapshot (SQLite + sqlite-vec functions)
    <directory>/.index-*.tmp  in-flight writes, never read

Every write builds a complete new snapshot in a temporary file inside the
directory and swaps it in with ``os.replace``. Readers open whichever file
``index.db`` names at that moment, so they see either the previous or the
new snapshot, never a partial one.

Writers are serialized by a reentrant lock held around load → merge →
persist. ``exclusive()`` exposes the same lock so a caller can choose
between ``create_from`` and ``merge_into`` without racing another writer.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import struct
import tempfile
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

from ledgerkb.errors import IndexCorrupted, IndexUnavailable, IndexWriteFailed
from ledgerkb.index.models import IndexEntry, IndexSnapshot, SearchHit
from ledgerkb.ingest.embedder import Embedder

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "index.db"
FORMAT_VERSION = "1"
_TMP_PREFIX = ".index-"
_TMP_SUFFIX = ".tmp"

_SCHEMA = """
CREATE TABLE meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE entries (
    rowid      INTEGER PRIMARY KEY,
    source_url TEXT NOT NULL,
    chunk_text TEXT NOT NULL,
    embedding  BLOB NOT NULL
);
CREATE INDEX idx_entries_source_url ON entries(source_url);
"""


def _connect(path: Path, readonly: bool = False) -> sqlite3.Connection:
    """Open *path* with sqlite-vec loaded."""
    if readonly:
        conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
    else:
        conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.enable_load_extension(True)
    sqlite_vec.load(conn)
    conn.enable_load_extension(False)
    return conn


class IndexManager:
    """Owns the persisted similarity index at *directory*.

    Args:
        directory: Index directory (created on first write).
        embedder: Embedder used for search queries; must be the one used
            to embed indexed chunks.
    """

    def __init__(self, directory: Path | str, embedder: Embedder) -> None:
        self.directory = Path(directory)
        self._embedder = embedder
        self._lock = threading.RLock()

    @property
    def snapshot_path(self) -> Path:
        return self.directory / SNAPSHOT_NAME

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the writer lock for a check-then-write sequence."""
        with self._lock:
            yield

    # ------------------------------------------------------------------
    # Existence + load
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        """True if the directory holds a readable, non-empty snapshot.

        A corrupted snapshot counts as absent so that the next write
        replaces it via ``create_from``.
        """
        if not self.directory.is_dir():
            return False
        if not any(not _is_tmp(p) for p in self.directory.iterdir()):
            return False
        try:
            with self._open_snapshot() as conn:
                count = _read_meta(conn)["entry_count"]
        except IndexUnavailable:
            return False
        except IndexCorrupted as exc:
            logger.warning("Index snapshot at %s is unreadable: %s", self.snapshot_path, exc)
            return False
        return int(count) > 0

    def load(self) -> IndexSnapshot:
        """Read the full snapshot.

        Raises:
            IndexUnavailable: No snapshot file exists.
            IndexCorrupted: The snapshot exists but cannot be parsed.
        """
        with self._open_snapshot() as conn:
            meta = _read_meta(conn)
            dims = int(meta["dimensions"])
            try:
                rows = conn.execute(
                    "SELECT source_url, chunk_text, embedding FROM entries ORDER BY rowid"
                ).fetchall()
            except sqlite3.DatabaseError as exc:
                raise IndexCorrupted(f"cannot read entries: {exc}") from exc

        entries = [
            IndexEntry(
                source_url=row["source_url"],
                chunk_text=row["chunk_text"],
                embedding=_deserialize(row["embedding"], dims),
            )
            for row in rows
        ]
        if len(entries) != int(meta["entry_count"]):
            raise IndexCorrupted(
                f"snapshot declares {meta['entry_count']} entries but holds {len(entries)}"
            )
        return IndexSnapshot(entries=tuple(entries), embedding_model=meta["embedding_model"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_from(self, entries: list[IndexEntry]) -> IndexSnapshot:
        """Build a fresh snapshot from *entries*, replacing any prior one.

        Raises:
            IndexWriteFailed: The snapshot could not be written; the prior
                snapshot (if any) is untouched.
        """
        with self._lock:
            try:
                snapshot = IndexSnapshot(
                    entries=tuple(entries), embedding_model=self._embedder.model
                )
            except ValueError as exc:
                raise IndexWriteFailed(str(exc)) from exc
            self._persist(snapshot)
            self._remove_stale_files()
            logger.info("Created index with %d entries at %s", len(snapshot), self.directory)
            return snapshot

    def merge_into(self, entries: list[IndexEntry]) -> None:
        """Append *entries* to the persisted snapshot.

        Repeated submissions of the same URL are not deduplicated. If the
        current snapshot is missing or corrupted the merge starts from an
        empty base, which is the same as ``create_from``.

        Raises:
            IndexWriteFailed: Dimension mismatch or write failure; the prior
                snapshot is untouched.
        """
        with self._lock:
            try:
                base = self.load()
            except IndexUnavailable:
                base = IndexSnapshot(embedding_model=self._embedder.model)
            except IndexCorrupted as exc:
                logger.warning("Replacing corrupted index snapshot: %s", exc)
                base = IndexSnapshot(embedding_model=self._embedder.model)

            try:
                merged = base.merged(entries)
            except ValueError as exc:
                raise IndexWriteFailed(
                    f"cannot merge {len(entries)} entries into index of "
                    f"dimension {base.dimensions}: {exc}"
                ) from exc
            self._persist(merged)
            logger.info(
                "Merged %d entries into index (%d total)", len(entries), len(merged)
            )

    def _persist(self, snapshot: IndexSnapshot) -> None:
        """Write *snapshot* to a temp file, then atomically rename it into place."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=_TMP_PREFIX, suffix=_TMP_SUFFIX, dir=self.directory
            )
            os.close(fd)
        except OSError as exc:
            raise IndexWriteFailed(f"cannot create index directory {self.directory}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            self._write_snapshot(tmp_path, snapshot)
            os.replace(tmp_path, self.snapshot_path)
        except (OSError, sqlite3.Error) as exc:
            tmp_path.unlink(missing_ok=True)
            raise IndexWriteFailed(f"failed to persist index snapshot: {exc}") from exc

    @staticmethod
    def _write_snapshot(path: Path, snapshot: IndexSnapshot) -> None:
        conn = _connect(path)
        try:
            conn.executescript(_SCHEMA)
            conn.executemany(
                "INSERT INTO meta (key, value) VALUES (?, ?)",
                [
                    ("format_version", FORMAT_VERSION),
                    ("embedding_model", snapshot.embedding_model),
                    ("dimensions", str(snapshot.dimensions)),
                    ("entry_count", str(len(snapshot))),
                ],
            )
            conn.executemany(
                "INSERT INTO entries (rowid, source_url, chunk_text, embedding) "
                "VALUES (?, ?, ?, ?)",
                (
                    (i + 1, e.source_url, e.chunk_text, sqlite_vec.serialize_float32(list(e.embedding)))
                    for i, e in enumerate(snapshot.entries)
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _remove_stale_files(self) -> None:
        """Delete everything in the directory except the live snapshot."""
        for path in self.directory.iterdir():
            if path.name == SNAPSHOT_NAME or _is_tmp(path) or path.is_dir():
                continue
            logger.debug("Removing stale index file %s", path)
            path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, query_text: str, k: int) -> list[SearchHit]:
        """Return up to *k* entries nearest to *query_text*, best first.

        Equal distances are ordered by insertion order.

        Raises:
            IndexUnavailable: No readable snapshot exists.
            EmbeddingUnavailable: The query could not be embedded.
        """
        if k < 1:
            return []
        try:
            with self._open_snapshot() as conn:
                meta = _read_meta(conn)
                dims = int(meta["dimensions"])
                query_vec = self._embedder.embed_one(query_text)
                if len(query_vec) != dims:
                    raise IndexUnavailable(
                        f"query embedding has {len(query_vec)} dimensions, "
                        f"index was built with {dims} ({meta['embedding_model']})"
                    )
                rows = conn.execute(
                    """
                    SELECT source_url, chunk_text, embedding,
                           vec_distance_l2(embedding, ?) AS distance
                    FROM entries
                    ORDER BY distance, rowid
                    LIMIT ?
                    """,
                    (sqlite_vec.serialize_float32(query_vec), k),
                ).fetchall()
                hits = [
                    SearchHit(
                        entry=IndexEntry(
                            source_url=row["source_url"],
                            chunk_text=row["chunk_text"],
                            embedding=_deserialize(row["embedding"], dims),
                        ),
                        distance=float(row["distance"]),
                    )
                    for row in rows
                ]
        except IndexCorrupted as exc:
            raise IndexUnavailable(f"index snapshot is unreadable: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise IndexUnavailable(f"index query failed: {exc}") from exc
        return hits

    def similarity_search(self, query_text: str, k: int) -> list[str]:
        """Return the text of up to *k* most similar chunks, best first."""
        return [hit.entry.chunk_text for hit in self.search(query_text, k)]

    def source_urls(self) -> Counter[str]:
        """Chunk count per source URL; empty when no readable snapshot exists."""
        try:
            with self._open_snapshot() as conn:
                _read_meta(conn)
                rows = conn.execute(
                    "SELECT source_url, COUNT(*) AS n FROM entries GROUP BY source_url"
                ).fetchall()
        except (IndexUnavailable, IndexCorrupted, sqlite3.DatabaseError):
            return Counter()
        return Counter({row["source_url"]: int(row["n"]) for row in rows})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _open_snapshot(self) -> Iterator[sqlite3.Connection]:
        path = self.snapshot_path
        if not path.is_file():
            raise IndexUnavailable(f"No index snapshot at {path}")
        try:
            conn = _connect(path, readonly=True)
        except sqlite3.DatabaseError as exc:
            raise IndexCorrupted(f"cannot open {path}: {exc}") from exc
        try:
            yield conn
        finally:
            conn.close()


def _read_meta(conn: sqlite3.Connection) -> dict[str, str]:
    """Return the snapshot metadata, validating the format version."""
    try:
        meta = {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM meta")}
    except sqlite3.DatabaseError as exc:
        raise IndexCorrupted(f"snapshot has no readable metadata: {exc}") from exc
    if meta.get("format_version") != FORMAT_VERSION:
        raise IndexCorrupted(
            f"unsupported snapshot format version {meta.get('format_version')!r}"
        )
    missing = {"embedding_model", "dimensions", "entry_count"} - meta.keys()
    if missing:
        raise IndexCorrupted(f"snapshot metadata is missing {sorted(missing)}")
    return meta


def _deserialize(blob: bytes, dims: int) -> tuple[float, ...]:
    """Unpack a float32 blob written by ``sqlite_vec.serialize_float32``."""
    if len(blob) != dims * 4:
        raise IndexCorrupted(f"embedding blob of {len(blob)} bytes, expected {dims * 4}")
    return struct.unpack(f"{dims}f", blob)


def _is_tmp(path: Path) -> bool:
    return path.name.startswith(_TMP_PREFIX) and path.name.endswith(_TMP_SUFFIX)
