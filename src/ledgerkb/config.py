"""ledgerkb configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (LEDGERKB_EMBEDDING_MODEL, LEDGERKB_RPC_URL,
                             LEDGERKB_INDEX_DIR, LEDGERKB_CONTRACT_ADDRESS)
  3. Per-project ledgerkb.yaml
  4. Global ~/.ledgerkb/config.yaml  (defaults only — no keys or credentials)
  5. Hardcoded defaults

Contributor private keys and provider API keys never live in config files;
they are read from the environment.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ledgerkb"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ledgerkb.yaml"

PRIVATE_KEY_ENV: str = "LEDGERKB_PRIVATE_KEY"

# Matches api_key, private_key, secret, password, mnemonic, credential(s), *_token.
_CREDENTIAL_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|private[_\-]?key"
    r"|mnemonic"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["fetch", "chunker", "embedding", "index", "ledger", "orchestrator", "search"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class FetchCfg:
    """Document retrieval settings (ledgerkb.yaml: fetch:)."""

    timeout: float = 30.0
    max_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 3
    allow_private: bool = False


@dataclass
class ChunkerCfg:
    """Chunk size and overlap in characters (ledgerkb.yaml: chunker:)."""

    chunk_size: int = 1000
    chunk_overlap: int = 200


@dataclass
class EmbeddingCfg:
    """Embedding provider settings (ledgerkb.yaml: embedding:)."""

    model: str = "gemini/text-embedding-004"
    batch_size: int = 64
    timeout: float = 60.0


@dataclass
class IndexCfg:
    """Persisted vector index location (ledgerkb.yaml: index:)."""

    directory: str = "vectorStore"


@dataclass
class LedgerCfg:
    """Ledger endpoint and contract settings (ledgerkb.yaml: ledger:).

    Attributes:
        rpc_url: JSON-RPC endpoint of the ledger node.
        contract_address: Address of the deployed contributions contract.
            When empty, it is read from *deployments_file*.
        deployments_file: JSON file written by the contract tooling,
            mapping contract name to deployed address.
        request_timeout: Seconds before a single RPC request is abandoned.
        confirmation_timeout: Seconds to wait for a transaction receipt.
        poll_latency: Seconds between receipt polls.
    """

    rpc_url: str = "http://127.0.0.1:8545/"
    contract_address: str = ""
    deployments_file: str = "contracts/deployments/localhost.json"
    request_timeout: float = 10.0
    confirmation_timeout: float = 120.0
    poll_latency: float = 0.5


@dataclass
class OrchestratorCfg:
    """Submission flow settings (ledgerkb.yaml: orchestrator:)."""

    embed_retries: int = 2
    retry_backoff: float = 1.0
    max_workers: int = 4


@dataclass
class SearchCfg:
    """Similarity search defaults (ledgerkb.yaml: search:)."""

    top_k: int = 2


@dataclass
class LedgerKBConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    fetch: FetchCfg = field(default_factory=FetchCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    ledger: LedgerCfg = field(default_factory=LedgerCfg)
    orchestrator: OrchestratorCfg = field(default_factory=OrchestratorCfg)
    search: SearchCfg = field(default_factory=SearchCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_credentials(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _CREDENTIAL_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Keys and credentials must be set via environment variables.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LedgerKBConfig) -> None:
    if cfg.chunker.chunk_size < 1:
        raise ConfigError("chunker.chunk_size must be >= 1")
    if not 0 <= cfg.chunker.chunk_overlap < cfg.chunker.chunk_size:
        raise ConfigError(
            f"chunker.chunk_overlap ({cfg.chunker.chunk_overlap}) must be >= 0 "
            f"and smaller than chunker.chunk_size ({cfg.chunker.chunk_size})"
        )
    timeouts = {
        "fetch.timeout": cfg.fetch.timeout,
        "embedding.timeout": cfg.embedding.timeout,
        "ledger.request_timeout": cfg.ledger.request_timeout,
        "ledger.confirmation_timeout": cfg.ledger.confirmation_timeout,
    }
    for name, value in timeouts.items():
        if value <= 0:
            raise ConfigError(f"{name} must be > 0, got {value}")
    if cfg.ledger.poll_latency <= 0:
        raise ConfigError(f"ledger.poll_latency must be > 0, got {cfg.ledger.poll_latency}")
    if cfg.orchestrator.retry_backoff < 0:
        raise ConfigError(
            f"orchestrator.retry_backoff must be >= 0, got {cfg.orchestrator.retry_backoff}"
        )
    if cfg.fetch.max_bytes < 1:
        raise ConfigError("fetch.max_bytes must be >= 1")
    if cfg.fetch.max_redirects < 0:
        raise ConfigError("fetch.max_redirects must be >= 0")
    if cfg.embedding.batch_size < 1:
        raise ConfigError("embedding.batch_size must be >= 1")
    if cfg.orchestrator.max_workers < 1:
        raise ConfigError("orchestrator.max_workers must be >= 1")
    if cfg.orchestrator.embed_retries < 0:
        raise ConfigError("orchestrator.embed_retries must be >= 0")
    if cfg.search.top_k < 1:
        raise ConfigError("search.top_k must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> LedgerKBConfig:
    """Build a *LedgerKBConfig* from a merged raw YAML dict."""
    cfg = LedgerKBConfig()

    if "fetch" in data:
        f = data["fetch"] or {}
        cfg.fetch = FetchCfg(
            timeout=float(f.get("timeout", cfg.fetch.timeout)),
            max_bytes=int(f.get("max_bytes", cfg.fetch.max_bytes)),
            max_redirects=int(f.get("max_redirects", cfg.fetch.max_redirects)),
            allow_private=bool(f.get("allow_private", cfg.fetch.allow_private)),
        )

    if "chunker" in data:
        c = data["chunker"] or {}
        cfg.chunker = ChunkerCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunker.chunk_size)),
            chunk_overlap=int(c.get("chunk_overlap", cfg.chunker.chunk_overlap)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
        )

    if "index" in data:
        i = data["index"] or {}
        cfg.index = IndexCfg(directory=str(i.get("directory", cfg.index.directory)))

    if "ledger" in data:
        lg = data["ledger"] or {}
        cfg.ledger = LedgerCfg(
            rpc_url=str(lg.get("rpc_url", cfg.ledger.rpc_url)),
            contract_address=str(lg.get("contract_address") or cfg.ledger.contract_address),
            deployments_file=str(lg.get("deployments_file", cfg.ledger.deployments_file)),
            request_timeout=float(lg.get("request_timeout", cfg.ledger.request_timeout)),
            confirmation_timeout=float(
                lg.get("confirmation_timeout", cfg.ledger.confirmation_timeout)
            ),
            poll_latency=float(lg.get("poll_latency", cfg.ledger.poll_latency)),
        )

    if "orchestrator" in data:
        o = data["orchestrator"] or {}
        cfg.orchestrator = OrchestratorCfg(
            embed_retries=int(o.get("embed_retries", cfg.orchestrator.embed_retries)),
            retry_backoff=float(o.get("retry_backoff", cfg.orchestrator.retry_backoff)),
            max_workers=int(o.get("max_workers", cfg.orchestrator.max_workers)),
        )

    if "search" in data:
        s = data["search"] or {}
        cfg.search = SearchCfg(top_k=int(s.get("top_k", cfg.search.top_k)))

    return cfg


def _apply_env_overrides(cfg: LedgerKBConfig) -> LedgerKBConfig:
    """Apply LEDGERKB_* environment variable overrides."""
    if model := os.environ.get("LEDGERKB_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if rpc_url := os.environ.get("LEDGERKB_RPC_URL"):
        cfg.ledger.rpc_url = rpc_url
    if address := os.environ.get("LEDGERKB_CONTRACT_ADDRESS"):
        cfg.ledger.contract_address = address
    if directory := os.environ.get("LEDGERKB_INDEX_DIR"):
        cfg.index.directory = directory
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LedgerKBConfig:
    """Load and return a merged *LedgerKBConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ledgerkb.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains credential-like fields or a
            value is malformed or out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_credentials(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _check_no_credentials(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def read_private_key() -> str:
    """Return the contributor private key from the environment.

    Raises:
        ConfigError: If ``LEDGERKB_PRIVATE_KEY`` is not set.
    """
    key = os.environ.get(PRIVATE_KEY_ENV, "").strip()
    if not key:
        raise ConfigError(
            f"No contributor key found. Set the {PRIVATE_KEY_ENV} environment variable."
        )
    return key
