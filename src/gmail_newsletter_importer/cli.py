"""CLI entry point for Gmail Newsletter Importer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import click

from . import constants
from .auth import TokenFileCredentialProvider, link_account, open_client
from .display import (
    configure_logging,
    console,
    create_progress,
    display_connections,
    display_import_summary,
    display_senders,
    display_status,
)
from .errors import TokenExpiredError
from .export import export_senders
from .gmail_client import GmailClient
from .importer import Importer
from .library import SQLiteLibrary
from .models import ImportProgress, RunResult, ScanProgress, SelectionState
from .scanner import Scanner
from .store import ProgressStore

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass
class AppContext:
    config_dir: Path
    db_path: Path

    @property
    def client_secret_path(self) -> Path:
        return self.config_dir / constants.CLIENT_SECRET_PATH.name

    def provider(self, store: ProgressStore) -> TokenFileCredentialProvider:
        return TokenFileCredentialProvider(self.config_dir / constants.TOKENS_DIR.name, store=store)


pass_app = click.make_pass_decorator(AppContext)


def _client_for(app: AppContext, store: ProgressStore, connection_id: int) -> GmailClient:
    connection = store.get_connection(connection_id)
    if connection is None or not connection.is_active:
        raise click.ClickException(f"Connection {connection_id} is not active. Run 'auth' to link an account.")
    try:
        return open_client(connection, app.provider(store))
    except TokenExpiredError as e:
        raise click.ClickException(e.message) from e


def _fail(result: RunResult) -> None:
    if not result.success:
        suffix = f" ({result.error_code})" if result.error_code else ""
        raise click.ClickException(f"{result.error}{suffix}")


@click.group()
@click.version_option(version="0.1.0", prog_name="gmail-newsletter-importer")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="GMAIL_IMPORTER_CONFIG_DIR",
    default=None,
    help="Directory holding client_secret.json, tokens and the database.",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="GMAIL_IMPORTER_DB",
    default=None,
    help="SQLite database path.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar="GMAIL_IMPORTER_LOG_LEVEL",
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, db_path: Path | None, log_level: str) -> None:
    """Gmail Newsletter Importer - find newsletters in Gmail and import them once."""
    configure_logging(log_level)
    config_dir = config_dir or constants.CONFIG_DIR
    ctx.obj = AppContext(config_dir=config_dir, db_path=db_path or config_dir / constants.DB_PATH.name)


@cli.command()
@click.option("--user", "user_id", default="local", show_default=True, help="Owner of the linked mailbox.")
@pass_app
def auth(app: AppContext, user_id: str) -> None:
    """Link a Gmail account through the OAuth browser flow."""
    with ProgressStore(app.db_path) as store:
        try:
            connection = link_account(store, app.provider(store), user_id, app.client_secret_path)
        except FileNotFoundError as e:
            raise click.ClickException(str(e)) from e
    console.print(f"[green]Linked {connection.email} as connection {connection.id}.[/green]")


@cli.command()
@pass_app
def connections(app: AppContext) -> None:
    """List linked Gmail accounts."""
    with ProgressStore(app.db_path) as store:
        display_connections(store.list_connections())


@cli.command()
@click.argument("connection_id", type=int)
@pass_app
def disconnect(app: AppContext, connection_id: int) -> None:
    """Deactivate a connection and forget its token."""
    with ProgressStore(app.db_path) as store:
        if store.get_connection(connection_id) is None:
            raise click.ClickException(f"Unknown connection {connection_id}.")
        store.deactivate_connection(connection_id)
        app.provider(store).delete(connection_id)
    console.print(f"[green]Connection {connection_id} disconnected.[/green]")


@cli.command()
@click.argument("connection_id", type=int)
@pass_app
def scan(app: AppContext, connection_id: int) -> None:
    """Scan the mailbox and detect newsletter senders."""
    with ProgressStore(app.db_path) as store:
        client = _client_for(app, store, connection_id)

        with create_progress("Scanning mailbox") as progress:
            task = progress.add_task("scan", total=None)

            def on_progress(p: ScanProgress) -> None:
                progress.update(task, completed=p.processed_emails, total=p.total_emails or None)

            result = Scanner(store, client).start_scan(connection_id, progress_callback=on_progress)

        _fail(result)
        display_senders(store.get_detected_senders(connection_id))


@cli.command()
@click.argument("connection_id", type=int)
@click.option("--min-score", default=0, type=click.IntRange(0, 100), help="Minimum confidence score (0-100).")
@pass_app
def senders(app: AppContext, connection_id: int, min_score: int) -> None:
    """Show detected senders."""
    with ProgressStore(app.db_path) as store:
        detected = store.get_detected_senders(connection_id)
    if not detected:
        raise click.ClickException("No detected senders. Run 'scan' first.")
    display_senders(detected, min_score=min_score)


def _toggle(app: AppContext, connection_id: int, emails: tuple[str, ...], selection: SelectionState) -> None:
    with ProgressStore(app.db_path) as store:
        changed = store.set_selection(connection_id, list(emails), selection)
    console.print(f"{changed} sender(s) {selection.value}.")


@cli.command()
@click.argument("connection_id", type=int)
@click.argument("emails", nargs=-1, required=True)
@pass_app
def select(app: AppContext, connection_id: int, emails: tuple[str, ...]) -> None:
    """Mark senders as selected."""
    _toggle(app, connection_id, emails, SelectionState.SELECTED)


@cli.command()
@click.argument("connection_id", type=int)
@click.argument("emails", nargs=-1, required=True)
@pass_app
def deselect(app: AppContext, connection_id: int, emails: tuple[str, ...]) -> None:
    """Mark senders as deselected."""
    _toggle(app, connection_id, emails, SelectionState.DESELECTED)


@cli.command()
@click.argument("connection_id", type=int)
@click.argument("emails", nargs=-1)
@pass_app
def approve(app: AppContext, connection_id: int, emails: tuple[str, ...]) -> None:
    """Approve senders for import (every selected sender when none given)."""
    with ProgressStore(app.db_path) as store:
        approved = store.approve_senders(connection_id, list(emails) or None)
    console.print(f"{approved} sender(s) approved.")


@cli.command(name="import")
@click.argument("connection_id", type=int)
@click.option(
    "--plan",
    type=click.Choice([constants.PLAN_FREE, constants.PLAN_PRO]),
    default=constants.PLAN_FREE,
    show_default=True,
)
@pass_app
def import_cmd(app: AppContext, connection_id: int, plan: str) -> None:
    """Import every message from the approved senders."""
    with ProgressStore(app.db_path) as store, SQLiteLibrary(app.db_path) as library:
        client = _client_for(app, store, connection_id)

        with create_progress("Importing newsletters") as progress:
            task = progress.add_task("import", total=None)

            def on_progress(p: ImportProgress) -> None:
                done = p.imported_emails + p.skipped_emails + p.failed_emails
                progress.update(task, completed=done, total=p.total_emails or None)

            result = Importer(store, client, library).start_import(
                connection_id, plan=plan, progress_callback=on_progress
            )

    _fail(result)
    display_import_summary(result)


@cli.command()
@click.argument("connection_id", type=int)
@pass_app
def status(app: AppContext, connection_id: int) -> None:
    """Show scan and import progress."""
    with ProgressStore(app.db_path) as store:
        display_status(store.get_scan_progress(connection_id), store.get_import_progress(connection_id))


@cli.command(name="export")
@click.argument("connection_id", type=int)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
@pass_app
def export_cmd(app: AppContext, connection_id: int, fmt: str, output: str) -> None:
    """Export detected senders to CSV or JSON."""
    with ProgressStore(app.db_path) as store:
        detected = store.get_detected_senders(connection_id)

    if not detected:
        raise click.ClickException("No detected senders. Run 'scan' first.")

    count = export_senders(detected, format=fmt, output_path=output)
    console.print(f"{count} senders saved to {output}")
