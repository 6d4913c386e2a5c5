"""ledgerkb submit — index one or more URLs and record them on the ledger.

Usage:
  ledgerkb submit https://example.com/doc --tag a --tag b
  ledgerkb submit URL1 URL2 URL3 --tag batch        (runs concurrently)

The contributor key is read from LEDGERKB_PRIVATE_KEY.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ledgerkb.cli.context import console, open_knowledge_base
from ledgerkb.cli.errors import (
    err_indexed_not_recorded,
    err_ledger_unavailable,
    err_no_private_key,
    err_submission_aborted,
    err_unreachable_source,
    warn_unresolved_id,
)
from ledgerkb.config import ConfigError, read_private_key
from ledgerkb.errors import (
    IndexedNotRecorded,
    LedgerUnavailable,
    SubmissionAborted,
    UnreachableSource,
)
from ledgerkb.ledger.client import UNRESOLVED_ID
from ledgerkb.orchestrator import Submission, SubmissionRequest

_STATE_LABELS = {
    "fetching": "Fetching…",
    "chunking": "Chunking…",
    "embedding": "Embedding…",
    "indexing": "Updating index…",
    "submitting": "Waiting for ledger confirmation…",
}


def submit_cmd(
    ctx: typer.Context,
    urls: Annotated[list[str], typer.Argument(help="URL(s) to contribute.")],
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag to record with the contribution (repeatable)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", min=1, help="Concurrent submissions (default: orchestrator.max_workers)."),
    ] = None,
) -> None:
    """Index a document and record the contribution on the ledger."""
    try:
        credential = read_private_key()
    except ConfigError:
        console.print(err_no_private_key())
        raise typer.Exit(1)

    tags = tag or []
    kb = open_knowledge_base(ctx)
    if workers is not None:
        kb.orchestrator.max_workers = workers

    if len(urls) == 1:
        _submit_one(kb, credential, urls[0], tags)
        return

    requests = [SubmissionRequest(credential=credential, source_url=u, tags=tags) for u in urls]
    with console.status(f"Submitting {len(requests)} documents…"):
        submissions = kb.submit_many(requests)
    _show_batch(submissions)
    if not all(s.succeeded for s in submissions):
        raise typer.Exit(1)


def _submit_one(kb, credential: str, url: str, tags: list[str]) -> None:
    console.print(f"\n[bold]→ {url}[/]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Starting…", total=None)

        def _on_transition(submission: Submission) -> None:
            label = _STATE_LABELS.get(submission.state.value)
            if label:
                prog.update(task, description=label)

        try:
            contribution_id = kb.submit(credential, url, tags, on_transition=_on_transition)
        except UnreachableSource as exc:
            console.print(err_unreachable_source(exc.url, exc.reason))
            raise typer.Exit(1)
        except SubmissionAborted as exc:
            console.print(err_submission_aborted(exc.stage, str(exc)))
            raise typer.Exit(1)
        except IndexedNotRecorded as exc:
            reason = str(exc.__cause__) if exc.__cause__ else str(exc)
            console.print(err_indexed_not_recorded(exc.source_url, exc.entry_count, reason))
            raise typer.Exit(1)
        except LedgerUnavailable as exc:
            console.print(err_ledger_unavailable(str(exc)))
            raise typer.Exit(1)

    if contribution_id == UNRESOLVED_ID:
        console.print(warn_unresolved_id())
        return
    console.print(f"  [green]✓[/] Recorded as contribution [bold]{contribution_id}[/]")


def _show_batch(submissions: list[Submission]) -> None:
    table = Table(title="Submissions")
    table.add_column("URL", overflow="fold")
    table.add_column("Chunks", justify="right")
    table.add_column("Result")
    for s in submissions:
        if s.succeeded:
            result = f"[green]✓ id {s.contribution_id}[/]"
        elif isinstance(s.error, IndexedNotRecorded):
            result = "[red]✗ indexed, not recorded[/]"
        else:
            result = f"[red]✗ {s.error}[/]"
        table.add_row(s.source_url, str(s.chunk_count), result)
    console.print(table)
