"""ledgerkb CLI entry point."""

from __future__ import annotations

import importlib.metadata
from pathlib import Path
from typing import Annotated

import typer

from ledgerkb.cli.context import CliState, setup_logging
from ledgerkb.cli.contributions import by_contributor_cmd, list_cmd, show_cmd, total_cmd
from ledgerkb.cli.search import audit_cmd, search_cmd
from ledgerkb.cli.submit import submit_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ledgerkb")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ledgerkb {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ledgerkb",
    help=(
        "ledgerkb — shared knowledge base with on-ledger provenance.\n\n"
        "  ledgerkb submit URL   Index a document and record it on the ledger.\n"
        "  ledgerkb search TEXT  Query the vector index."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", "-C", help="Directory holding ledgerkb.yaml."),
    ] = Path("."),
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """ledgerkb — shared knowledge base with on-ledger provenance."""
    setup_logging(verbose)
    ctx.obj = CliState(project_dir=project_dir, verbose=verbose)


app.command("submit")(submit_cmd)
app.command("list")(list_cmd)
app.command("total")(total_cmd)
app.command("show")(show_cmd)
app.command("by-contributor")(by_contributor_cmd)
app.command("search")(search_cmd)
app.command("audit")(audit_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ledgerkb version."""
    typer.echo(f"ledgerkb {_installed_version()}")


if __name__ == "__main__":
    app()
