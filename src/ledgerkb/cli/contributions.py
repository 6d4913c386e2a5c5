"""Ledger read commands: list, total, show, by-contributor."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

import typer
from rich.table import Table

from ledgerkb.cli.context import console, open_knowledge_base
from ledgerkb.cli.errors import err_ledger_unavailable, err_not_found
from ledgerkb.errors import LedgerError, NotFound
from ledgerkb.ledger.models import Contribution


def list_cmd(ctx: typer.Context) -> None:
    """List every recorded contribution."""
    kb = open_knowledge_base(ctx)
    try:
        contributions = kb.list_all()
    except LedgerError as exc:
        console.print(err_ledger_unavailable(str(exc)))
        raise typer.Exit(1)
    _show_contributions(contributions, title="All contributions")


def total_cmd(ctx: typer.Context) -> None:
    """Show the number of recorded contributions."""
    kb = open_knowledge_base(ctx)
    try:
        total = kb.get_total()
    except LedgerError as exc:
        console.print(err_ledger_unavailable(str(exc)))
        raise typer.Exit(1)
    console.print(f"Total contributions: [bold]{total}[/]")


def show_cmd(
    ctx: typer.Context,
    contribution_id: Annotated[int, typer.Argument(help="Contribution id.")],
) -> None:
    """Show one contribution by id."""
    kb = open_knowledge_base(ctx)
    try:
        contribution = kb.get_by_id(contribution_id)
    except NotFound:
        console.print(err_not_found(contribution_id))
        raise typer.Exit(1)
    except LedgerError as exc:
        console.print(err_ledger_unavailable(str(exc)))
        raise typer.Exit(1)
    _show_contributions([contribution], title=f"Contribution {contribution_id}")


def by_contributor_cmd(
    ctx: typer.Context,
    address: Annotated[str, typer.Argument(help="Contributor address (0x…).")],
) -> None:
    """List the contributions of one contributor."""
    kb = open_knowledge_base(ctx)
    try:
        contributions = kb.get_by_contributor(address)
    except ValueError as exc:
        console.print(f"[red]Error:[/] Not a valid address: '{address}' ({exc})")
        raise typer.Exit(1)
    except LedgerError as exc:
        console.print(err_ledger_unavailable(str(exc)))
        raise typer.Exit(1)
    if not contributions:
        console.print(f"[dim]No contributions from {address}.[/]")
        return
    _show_contributions(contributions, title=f"Contributions by {address}")


def _show_contributions(contributions: list[Contribution], title: str) -> None:
    if not contributions:
        console.print("[dim]No contributions recorded yet.[/]")
        return
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Contributor")
    table.add_column("Recorded (UTC)")
    table.add_column("Source URL", overflow="fold")
    table.add_column("Tags")
    for c in contributions:
        recorded = datetime.fromtimestamp(c.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
        table.add_row(str(c.id), c.contributor_address, recorded, c.source_url, ", ".join(c.tags))
    console.print(table)
