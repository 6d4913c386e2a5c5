"""ledgerkb search / audit — index read commands."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from ledgerkb.cli.context import console, open_knowledge_base
from ledgerkb.cli.errors import (
    err_index_unavailable,
    err_ledger_unavailable,
    err_submission_aborted,
)
from ledgerkb.errors import EmbeddingUnavailable, IndexUnavailable, LedgerError


def search_cmd(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Question or search text.")],
    k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Maximum number of chunks (default: search.top_k)."),
    ] = None,
) -> None:
    """Show the indexed chunks most similar to QUERY."""
    kb = open_knowledge_base(ctx)
    try:
        hits = kb.search(query, k)
    except IndexUnavailable as exc:
        console.print(err_index_unavailable(str(exc)))
        raise typer.Exit(1)
    except EmbeddingUnavailable as exc:
        console.print(err_submission_aborted("query embedding", str(exc)))
        raise typer.Exit(1)

    if not hits:
        console.print("[dim]No results.[/]")
        return
    for rank, hit in enumerate(hits, start=1):
        console.print(
            Panel(
                hit.entry.chunk_text,
                title=f"[bold]#{rank}[/]  distance {hit.distance:.4f}",
                subtitle=f"[dim]{hit.entry.source_url}[/]",
                expand=False,
            )
        )


def audit_cmd(ctx: typer.Context) -> None:
    """Compare indexed URLs with ledger records (read-only)."""
    kb = open_knowledge_base(ctx)
    try:
        report = kb.audit()
    except LedgerError as exc:
        console.print(err_ledger_unavailable(str(exc)))
        raise typer.Exit(1)

    console.print(
        f"Indexed URLs: [bold]{report.indexed_url_count}[/]  |  "
        f"Ledger contributions: [bold]{report.contribution_count}[/]"
    )
    if report.consistent:
        console.print("[green]✓[/] Every indexed URL has a ledger record and vice versa.")
        return

    if report.orphan_urls:
        table = Table(title="Indexed, not recorded (orphans)")
        table.add_column("Source URL", overflow="fold")
        table.add_column("Chunks", justify="right")
        for url, n in report.orphan_urls.items():
            table.add_row(url, str(n))
        console.print(table)
    if report.unindexed_urls:
        table = Table(title="Recorded, no index entries")
        table.add_column("Source URL", overflow="fold")
        for url in report.unindexed_urls:
            table.add_row(url)
        console.print(table)
