"""Shared CLI plumbing: logging setup and KnowledgeBase construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ledgerkb.cli.errors import err_config
from ledgerkb.config import ConfigError, load_config
from ledgerkb.service import KnowledgeBase

console = Console()


@dataclass
class CliState:
    """Options from the top-level callback, stored on ``ctx.obj``."""

    project_dir: Path = Path(".")
    verbose: bool = False


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # LiteLLM and urllib3 are noisy at INFO.
    for name in ("LiteLLM", "litellm", "httpx", "urllib3", "web3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def open_knowledge_base(ctx: typer.Context) -> KnowledgeBase:
    """Load config for the project directory and wire a KnowledgeBase."""
    state: CliState = ctx.obj or CliState()
    try:
        cfg = load_config(project_dir=state.project_dir)
        return KnowledgeBase.from_config(cfg, base_dir=state.project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
