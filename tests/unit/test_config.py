"""Tests for the ledgerkb config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from ledgerkb.config import (
    PRIVATE_KEY_ENV,
    ConfigError,
    LedgerKBConfig,
    load_config,
    read_private_key,
)

_ENV_VARS = (
    "LEDGERKB_EMBEDDING_MODEL",
    "LEDGERKB_RPC_URL",
    "LEDGERKB_CONTRACT_ADDRESS",
    "LEDGERKB_INDEX_DIR",
    PRIVATE_KEY_ENV,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


def _load(tmp_path: Path, global_cfg: Path | None = None) -> LedgerKBConfig:
    missing = tmp_path / "nonexistent" / "config.yaml"
    return load_config(project_dir=tmp_path, global_config_path=global_cfg or missing)


# ---------------------------------------------------------------------------
# Defaults (no config files present)
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = _load(tmp_path)

    assert cfg.embedding.model == "gemini/text-embedding-004"
    assert cfg.chunker.chunk_size == 1000
    assert cfg.chunker.chunk_overlap == 200
    assert cfg.index.directory == "vectorStore"
    assert cfg.ledger.rpc_url == "http://127.0.0.1:8545/"
    assert cfg.ledger.contract_address == ""
    assert cfg.search.top_k == 2
    assert cfg.orchestrator.embed_retries == 2


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_load_config_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"model": "openai/text-embedding-3-small"}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    # Other defaults unchanged
    assert cfg.embedding.batch_size == 64


def test_load_config_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"ledger": {"rpc_url": "http://global:8545", "request_timeout": 5}})
    _write_yaml(tmp_path / "ledgerkb.yaml", {"ledger": {"rpc_url": "http://project:8545"}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.ledger.rpc_url == "http://project:8545"
    # Deep merge keeps keys the project file does not set
    assert cfg.ledger.request_timeout == 5.0


def test_load_config_empty_files(tmp_path: Path) -> None:
    """Empty YAML files → defaults (no crash)."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("", encoding="utf-8")
    (tmp_path / "ledgerkb.yaml").write_text("", encoding="utf-8")

    cfg = _load(tmp_path, global_cfg)
    assert cfg.search.top_k == 2


def test_load_config_env_overrides_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(
        tmp_path / "ledgerkb.yaml",
        {"embedding": {"model": "openai/text-embedding-3-small"}, "index": {"directory": "idx"}},
    )
    monkeypatch.setenv("LEDGERKB_EMBEDDING_MODEL", "voyage/voyage-3")
    monkeypatch.setenv("LEDGERKB_RPC_URL", "http://env:8545")
    monkeypatch.setenv("LEDGERKB_CONTRACT_ADDRESS", "0x" + "ab" * 20)
    monkeypatch.setenv("LEDGERKB_INDEX_DIR", "/var/lib/ledgerkb")

    cfg = _load(tmp_path)
    assert cfg.embedding.model == "voyage/voyage-3"
    assert cfg.ledger.rpc_url == "http://env:8545"
    assert cfg.ledger.contract_address == "0x" + "ab" * 20
    assert cfg.index.directory == "/var/lib/ledgerkb"


def test_load_config_null_section_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "ledgerkb.yaml").write_text("chunker:\n", encoding="utf-8")
    cfg = _load(tmp_path)
    assert cfg.chunker.chunk_size == 1000


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "section,key",
    [
        ("ledger", "private_key"),
        ("embedding", "api_key"),
        ("ledger", "mnemonic"),
        ("ledger", "password"),
    ],
)
def test_project_config_rejects_credentials(tmp_path: Path, section: str, key: str) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {section: {key: "hunter2"}})
    with pytest.raises(ConfigError, match="forbidden key"):
        _load(tmp_path)


def test_global_config_rejects_credentials(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"ledger": {"private_key": "0xabc"}})
    with pytest.raises(ConfigError, match="ledger.private_key"):
        _load(tmp_path, global_cfg)


def test_credential_error_suggests_env_var(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"embedding": {"api_key": "sk-x"}})
    with pytest.raises(ConfigError, match="export API_KEY"):
        _load(tmp_path)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"retrieval": {"top_k": 5}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        _load(tmp_path)
    assert any("retrieval" in str(w.message) for w in caught)


def test_overlap_not_smaller_than_size_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"chunker": {"chunk_size": 100, "chunk_overlap": 100}})
    with pytest.raises(ConfigError, match="chunk_overlap"):
        _load(tmp_path)


def test_non_positive_timeout_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"ledger": {"confirmation_timeout": 0}})
    with pytest.raises(ConfigError, match="ledger.confirmation_timeout"):
        _load(tmp_path)


def test_zero_top_k_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"search": {"top_k": 0}})
    with pytest.raises(ConfigError, match="top_k"):
        _load(tmp_path)


def test_non_numeric_value_is_config_error(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"fetch": {"timeout": "abc"}})
    with pytest.raises(ConfigError, match="Invalid config value"):
        _load(tmp_path)


def test_non_mapping_section_is_config_error(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"chunker": [1, 2]})
    with pytest.raises(ConfigError, match="Invalid config value"):
        _load(tmp_path)


def test_negative_retry_backoff_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"orchestrator": {"retry_backoff": -1}})
    with pytest.raises(ConfigError, match="orchestrator.retry_backoff"):
        _load(tmp_path)


def test_zero_poll_latency_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "ledgerkb.yaml", {"ledger": {"poll_latency": 0}})
    with pytest.raises(ConfigError, match="ledger.poll_latency"):
        _load(tmp_path)


# ---------------------------------------------------------------------------
# Private key
# ---------------------------------------------------------------------------


def test_read_private_key_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PRIVATE_KEY_ENV, "  0xabc\n")
    assert read_private_key() == "0xabc"


def test_read_private_key_missing() -> None:
    with pytest.raises(ConfigError, match=PRIVATE_KEY_ENV):
        read_private_key()
