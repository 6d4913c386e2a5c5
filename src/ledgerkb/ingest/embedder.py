"""Embedder client — LiteLLM embeddings, batched and order-preserving.

The same ``Embedder`` is used for indexing chunks and for embedding
similarity-search queries, so both live in the same vector space.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import litellm

from ledgerkb.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

_PROVIDER_KEYS = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "gemini/text-embedding-004"
    batch_size: int = 64
    timeout: float = 60.0


class Embedder:
    """Turn text into fixed-dimension vectors via ``litellm.embedding()``.

    Args:
        config: Embedding configuration (model, batch size, timeout).
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def model(self) -> str:
        return self._config.model

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*; the i-th vector belongs to the i-th text.

        Raises:
            EmbeddingUnavailable: Missing API key, provider error, rate
                limit, timeout, or vectors of inconsistent dimension.
        """
        if not texts:
            return []
        self._check_api_key()

        logger.debug("Embedding %d texts with %s", len(texts), self._config.model)
        vectors: list[list[float]] = []
        size = self._config.batch_size
        for start in range(0, len(texts), size):
            vectors.extend(self._embed_batch(texts[start : start + size]))

        dims = {len(v) for v in vectors}
        if len(dims) != 1:
            raise EmbeddingUnavailable(
                f"Provider returned vectors of mixed dimensions {sorted(dims)}"
            )
        return vectors

    def embed_one(self, text: str) -> list[float]:
        """Embed a single string (used for search queries)."""
        return self.embed([text])[0]

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            response = litellm.embedding(
                model=self._config.model,
                input=batch,
                timeout=self._config.timeout,
            )
        except Exception as exc:
            raise EmbeddingUnavailable(
                f"Embedding provider failed for model '{self._config.model}': {exc}"
            ) from exc

        data = list(response.data)
        if len(data) != len(batch):
            raise EmbeddingUnavailable(
                f"Provider returned {len(data)} vectors for {len(batch)} inputs"
            )
        # Providers may return items out of order; "index" restores input order.
        if all(_field(item, "index") is not None for item in data):
            data.sort(key=lambda item: _field(item, "index"))
        return [list(_field(item, "embedding")) for item in data]

    def _check_api_key(self) -> None:
        """Fail early if no API key is available for the embedding provider."""
        model = self._config.model
        provider = model.split("/")[0].lower() if "/" in model else ""
        required_env = _PROVIDER_KEYS.get(provider)
        if required_env and not os.environ.get(required_env):
            raise EmbeddingUnavailable(
                f"No API key found for provider '{provider}'. "
                f"Set the {required_env} environment variable."
            )


def _field(item, name: str):
    """Read *name* from a dict-like or attribute-style response item."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
