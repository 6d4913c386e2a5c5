"""ledgerkb rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The action the user should take to fix it

Usage:
    from ledgerkb.cli.errors import err_no_private_key
    console.print(err_no_private_key())
    raise typer.Exit(1)
"""

from __future__ import annotations

from ledgerkb.config import PRIVATE_KEY_ENV


def err_no_private_key() -> str:
    """No contributor key in the environment."""
    return (
        "[red]Error:[/] No contributor key configured.\n"
        f"  Set:  export {PRIVATE_KEY_ENV}=0x..."
    )


def err_config(message: str) -> str:
    """Invalid or forbidden configuration."""
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_unreachable_source(url: str, reason: str) -> str:
    """Fetch failed; nothing was indexed or recorded."""
    return (
        f"[red]Error:[/] Could not retrieve '{url}': {reason}\n"
        "  Nothing was indexed or recorded. Check that the URL is public and try again."
    )


def err_submission_aborted(stage: str, message: str) -> str:
    """Pre-mutation failure other than fetch."""
    return (
        f"[red]Error:[/] Submission failed during {stage}: {message}\n"
        "  Nothing was indexed or recorded. It is safe to resubmit."
    )


def err_indexed_not_recorded(url: str, entry_count: int, reason: str) -> str:
    """Index updated, ledger submission failed."""
    return (
        f"[red]Error:[/] '{url}' was indexed ({entry_count} chunks) but NOT recorded on the ledger.\n"
        f"  Cause: {reason}\n"
        "  Resubmitting records it on the ledger and indexes its chunks a second time.\n"
        "  Run:  ledgerkb audit  to list indexed URLs without a ledger record."
    )


def err_ledger_unavailable(message: str) -> str:
    """Ledger node unreachable or timed out."""
    return (
        f"[red]Error:[/] Ledger unavailable: {message}\n"
        "  Check ledger.rpc_url in ledgerkb.yaml (or LEDGERKB_RPC_URL) and that the node is running."
    )


def err_not_found(contribution_id: int) -> str:
    """Unknown contribution id."""
    return (
        f"[yellow]Not found:[/] contribution {contribution_id} does not exist.\n"
        "  Run:  ledgerkb total  to see how many contributions are recorded."
    )


def err_index_unavailable(message: str) -> str:
    """No readable index snapshot."""
    return (
        f"[red]Error:[/] Index unavailable: {message}\n"
        "  Submit at least one document:  ledgerkb submit <URL>"
    )


def warn_unresolved_id() -> str:
    """Ledger confirmed the submission but the id could not be read."""
    return (
        "[yellow]⚠[/] The contribution was recorded but its id could not be resolved.\n"
        "  Run:  ledgerkb by-contributor <ADDRESS>  to find it."
    )
