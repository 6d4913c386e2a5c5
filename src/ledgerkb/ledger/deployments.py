"""Resolve the deployed contract address.

The contract tooling writes ``{"KnowledgeBaseContributor": "0x..."}`` to a
deployments JSON file per network. An explicit address in config wins.
"""

from __future__ import annotations

import json
from pathlib import Path

from ledgerkb.config import ConfigError, LedgerCfg
from ledgerkb.ledger.abi import CONTRACT_NAME


def resolve_contract_address(cfg: LedgerCfg, base_dir: Path | None = None) -> str:
    """Return the contract address from *cfg* or its deployments file.

    Args:
        cfg: Ledger configuration.
        base_dir: Directory relative deployments paths are resolved against.
            Defaults to CWD.

    Raises:
        ConfigError: No address configured and the deployments file is
            missing, unreadable, or has no entry for the contract.
    """
    if cfg.contract_address:
        return cfg.contract_address

    path = Path(cfg.deployments_file)
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(
            f"No contract address configured and no deployments file at '{path}'.\n"
            "  Set ledger.contract_address in ledgerkb.yaml or LEDGERKB_CONTRACT_ADDRESS."
        ) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read deployments file '{path}': {exc}") from exc

    address = data.get(CONTRACT_NAME) if isinstance(data, dict) else None
    if not address:
        raise ConfigError(f"Deployments file '{path}' has no '{CONTRACT_NAME}' entry.")
    return str(address)
