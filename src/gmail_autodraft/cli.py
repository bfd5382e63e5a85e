"""CLI entry point for Gmail Autodraft."""

from __future__ import annotations

import click

from .auth import run_sign_in
from .config import Settings, get_settings
from .constants import ACTIVITY_LIST_LIMIT
from .display import console, display_activities, display_outcome, display_status
from .driver import BackgroundDriver
from .errors import MailboxError
from .export import export_activities
from .log import setup_logging
from .runtime import Runtime


def _make_driver(runtime: Runtime) -> BackgroundDriver:
    settings = runtime.settings
    return BackgroundDriver(
        sessions=runtime.sessions,
        credentials=runtime.credentials,
        integrations=runtime.integrations,
        preferences=runtime.preferences,
        signals=runtime.signals,
        mailbox_factory=runtime.build_mailbox,
        is_online=runtime.is_online,
        max_auth_failures=settings.max_auth_failures,
        foreground_interval=settings.foreground_interval,
        background_interval=settings.background_interval,
        initial_delay=settings.initial_delay,
        reauth_rerun_delay=settings.reauth_rerun_delay,
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="gmail-autodraft")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Gmail Autodraft - classify customer emails, draft replies and send them."""
    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_json)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def connect(settings: Settings) -> None:
    """Sign in to Gmail and enable background processing for this mailbox."""
    try:
        result = run_sign_in(settings)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e
    except MailboxError as e:
        raise click.ClickException(str(e)) from e

    with Runtime(settings) as runtime:
        runtime.credentials.save(result.tokens, result.ttl_seconds)
        runtime.integrations.save(
            result.user_id,
            "gmail",
            {
                "email": result.email,
                "accessToken": result.tokens.access_token,
                "refreshToken": result.tokens.refresh_token,
            },
        )
        runtime.sessions.store(result.user_id, result.email)
        runtime.signals.emit_reauth_success(result.user_id)

    if not result.tokens.refresh_token:
        console.print("[yellow]No refresh token granted; you will have to reconnect when the token expires.[/yellow]")
    console.print(f"[green]Connected as {result.email}.[/green]")


@cli.command()
@click.pass_obj
def disconnect(settings: Settings) -> None:
    """Forget the mailbox tokens and integration (the session is kept)."""
    with Runtime(settings) as runtime:
        session = runtime.sessions.load()
        runtime.credentials.clear()
        if session is not None:
            runtime.integrations.remove(session.subject_id, "gmail")
    console.print("[green]Mailbox disconnected.[/green]")


@cli.command()
@click.pass_obj
def status(settings: Settings) -> None:
    """Show session, mailbox connection and activity counts."""
    with Runtime(settings) as runtime:
        session = runtime.sessions.load()
        try:
            connected = session is not None and runtime.integrations.get(session.subject_id, "gmail") is not None
        except MailboxError as e:
            raise click.ClickException(str(e)) from e
        display_status(session, runtime.credentials.load(), connected, runtime.activities.get_info())


@cli.command()
@click.pass_obj
def process(settings: Settings) -> None:
    """Process unread messages and send due drafts now."""
    with Runtime(settings) as runtime:
        driver = _make_driver(runtime)
        with console.status("Processing mailbox..."):
            outcome = driver.run_once(trigger="manual")
    display_outcome(outcome)
    if outcome.error:
        click.get_current_context().exit(1)


@cli.command(name="send-due")
@click.pass_obj
def send_due(settings: Settings) -> None:
    """Send every scheduled draft that is due."""
    with Runtime(settings) as runtime:
        session = runtime.sessions.load_valid()
        if session is None:
            raise click.ClickException("No valid session. Run 'connect' first.")
        try:
            mailbox = runtime.build_mailbox(session)
            sent = mailbox.scheduler.tick()
        except MailboxError as e:
            raise click.ClickException(str(e)) from e
    console.print(f"[green]Sent {sent} draft(s).[/green]")


@cli.command()
@click.pass_obj
def run(settings: Settings) -> None:
    """Run the background processor until interrupted."""
    with Runtime(settings) as runtime:
        driver = _make_driver(runtime)
        runtime.signals.on_auth_error(
            lambda event: console.print(
                f"[bold red]Authentication error for {event.user_id}: {event.message}. "
                "Run 'gmail-autodraft connect' to reconnect.[/bold red]"
            )
        )
        driver.start()
        console.print("[dim]Background processing started. Press Ctrl+C to stop.[/dim]")
        try:
            driver.wait()
        except KeyboardInterrupt:
            pass
        finally:
            driver.stop(timeout=30)


@cli.command()
@click.option("-n", "--limit", default=ACTIVITY_LIST_LIMIT, type=int, help="Number of records to show.")
@click.pass_obj
def activity(settings: Settings, limit: int) -> None:
    """Show recent activity records."""
    with Runtime(settings) as runtime:
        session = runtime.sessions.load()
        records = runtime.activities.list_recent(session.subject_id if session else None, limit=limit)

    if not records:
        console.print("[dim]No activity recorded yet.[/dim]")
        return
    display_activities(records, settings.language)


@cli.command(name="export")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
@click.option("-n", "--limit", default=1000, type=int, help="Maximum number of records.")
@click.pass_obj
def export_cmd(settings: Settings, fmt: str, output: str, limit: int) -> None:
    """Export activity records to CSV or JSON."""
    with Runtime(settings) as runtime:
        session = runtime.sessions.load()
        records = runtime.activities.list_recent(session.subject_id if session else None, limit=limit)

    if not records:
        raise click.ClickException("No activity recorded yet.")

    count = export_activities(records, format=fmt, output_path=output, language=settings.language)
    console.print(f"Exported {count} records to {output}")


@cli.group(name="store")
def store_group() -> None:
    """Inspect the local activity store."""


@store_group.command(name="info")
@click.pass_obj
def store_info(settings: Settings) -> None:
    """Show activity store statistics."""
    with Runtime(settings) as runtime:
        info = runtime.activities.get_info()

    if not info["activity_count"]:
        console.print("[dim]Store is empty.[/dim]")
        return

    console.print(f"[bold]Database size:[/bold] {info['db_file_size'] / 1024:.1f} KB")
    console.print(f"[bold]Last activity:[/bold] {info['last_activity']}")
    console.print(f"[bold]Activities:[/bold] {info['activity_count']}")
    for status_name, count in sorted(info["by_status"].items()):
        console.print(f"  - {status_name}: {count}")
