"""Ingest pipeline — fetcher, chunker, embedder client."""

from ledgerkb.ingest.chunker import Chunker
from ledgerkb.ingest.embedder import Embedder, EmbeddingConfig
from ledgerkb.ingest.fetcher import FetchedDocument, Fetcher

__all__ = [
    "Chunker",
    "Embedder",
    "EmbeddingConfig",
    "FetchedDocument",
    "Fetcher",
]
