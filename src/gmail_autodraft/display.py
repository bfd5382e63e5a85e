"""Rich-based display functions for Gmail Autodraft."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .categories import display_name
from .driver import RunOutcome
from .models import ActivityRecord, ActivityStatus, CredentialRecord, SessionRecord

console = Console()

_STATUS_COLORS = {
    ActivityStatus.CLASSIFIED: "white",
    ActivityStatus.DRAFT_CREATED: "yellow",
    ActivityStatus.DRAFT_SENT: "green",
}


def _fmt(value) -> str:
    if value is None or value == "":
        return "-"
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M")
    return str(value)


def display_activities(records: list[ActivityRecord], language: str = "fr") -> None:
    """Display activity records, newest first."""
    table = Table(title="Recent Activity")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Received")
    table.add_column("Sender")
    table.add_column("Subject")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Send at")

    for idx, record in enumerate(records, start=1):
        color = _STATUS_COLORS.get(record.status, "white")
        table.add_row(
            str(idx),
            _fmt(record.timestamp),
            record.sender,
            record.subject,
            display_name(record.category, language),
            f"[{color}]{record.status.value}[/{color}]",
            _fmt(record.sent_at or record.scheduled_send_time),
        )

    console.print(table)
    console.print(Panel(f"Activities shown: {len(records)}", title="Summary"))


def display_status(
    session: SessionRecord | None,
    credentials: CredentialRecord | None,
    connected: bool,
    info: dict,
) -> None:
    lines = []
    if session is None:
        lines.append("[bold]Session:[/bold] [red]none[/red]")
    else:
        state = "[green]valid[/green]" if session.is_valid() else "[red]expired[/red]"
        lines.append(f"[bold]Session:[/bold] {session.subject_contact} ({state})")
        lines.append(f"[bold]Last active:[/bold] {_fmt(session.last_active_at)}")

    if credentials is None:
        lines.append("[bold]Mailbox:[/bold] [red]not connected[/red]")
    else:
        expiry = "[yellow]expired[/yellow]" if credentials.is_expired() else _fmt(credentials.expiry)
        renew = "yes" if credentials.renewable else "[red]no[/red]"
        lines.append(f"[bold]Mailbox:[/bold] {'connected' if connected else '[yellow]no integration record[/yellow]'}")
        lines.append(f"[bold]Token expiry:[/bold] {expiry}  [bold]Renewable:[/bold] {renew}")

    by_status = info.get("by_status", {})
    lines.append("")
    lines.append(f"[bold]Activities:[/bold] {info.get('activity_count', 0)}")
    for status in ActivityStatus:
        lines.append(f"  - {status.value}: {by_status.get(status.value, 0)}")

    console.print(Panel("\n".join(lines), title="Status"))


def display_outcome(outcome: RunOutcome) -> None:
    """Display the result of a manual run."""
    if not outcome.ran:
        console.print(f"[yellow]Run skipped: {outcome.skipped_reason}[/yellow]")
        return
    if outcome.error:
        console.print(Panel(f"[bold red]{outcome.error}[/bold red]", title="Run failed"))
        return

    lines = []
    report = outcome.report
    if report is None:
        lines.append("[dim]Ingestion skipped (auto-classify disabled)[/dim]")
    else:
        lines.append(
            f"Unread: {report.fetched}  |  Processed: {report.processed}  |  "
            f"Skipped: {report.skipped}  |  Failed: {report.failed}"
        )
        lines.append(f"Drafts created: {report.drafted}  |  Scheduled: {report.scheduled}")
    lines.append(f"Drafts sent: {outcome.sent}")
    console.print(Panel("\n".join(lines), title="[bold green]Done[/bold green]"))
