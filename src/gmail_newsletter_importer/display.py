"""Rich-based display functions for Gmail Newsletter Importer."""

from __future__ import annotations

import logging
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .models import Connection, DetectedSender, ImportProgress, RunResult, ScanProgress, SelectionState
from .scorer import classify_confidence

console = Console()

_CLASS_ORDER = {"newsletter": 0, "likely_newsletter": 1, "unlikely": 2}


def configure_logging(level: str = "WARNING") -> None:
    """Route the package's logging through rich on the shared console."""
    handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    package_logger = logging.getLogger("gmail_newsletter_importer")
    package_logger.handlers = [handler]
    package_logger.setLevel(level.upper())


def _score_color(score: int) -> str:
    """Return a Rich color name based on the confidence score."""
    if score >= 50:
        return "green"
    if score >= 30:
        return "yellow"
    return "white"


def _format_ms(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def sort_senders(senders: list[DetectedSender]) -> list[DetectedSender]:
    """Newsletters first, then likely, each group by email count descending."""
    return sorted(
        senders,
        key=lambda s: (_CLASS_ORDER.get(classify_confidence(s.confidence_score), 3), -s.email_count, s.email),
    )


def create_progress(description: str) -> Progress:
    """Create a configured Rich Progress bar."""
    return Progress(
        SpinnerColumn(),
        TextColumn(f"[bold blue]{description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def display_senders(senders: list[DetectedSender], min_score: int = 0) -> None:
    """Display detected senders with their selection and approval state."""
    rows = [s for s in sort_senders(senders) if s.confidence_score >= min_score]

    table = Table(title="Detected Senders")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Email")
    table.add_column("Name")
    table.add_column("Emails", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Classification")
    table.add_column("Selected", justify="center")
    table.add_column("Approved", justify="center")

    total_emails = 0
    for idx, sender in enumerate(rows, start=1):
        color = _score_color(sender.confidence_score)
        total_emails += sender.email_count
        table.add_row(
            str(idx),
            f"[{color}]{sender.email}[/{color}]",
            sender.name or "",
            str(sender.email_count),
            f"[{color}]{sender.confidence_score}[/{color}]",
            f"[{color}]{classify_confidence(sender.confidence_score)}[/{color}]",
            "x" if sender.selection == SelectionState.SELECTED else "",
            "[bold green]x[/bold green]" if sender.is_approved else "",
        )

    console.print(table)
    console.print(
        Panel(
            f"Senders shown: {len(rows)}  |  Emails: {total_emails}  |  "
            f"Approved: {sum(1 for s in rows if s.is_approved)}",
            title="Summary",
        )
    )


def display_connections(connections: list[Connection]) -> None:
    if not connections:
        console.print("[dim]No Gmail accounts linked. Run 'auth' first.[/dim]")
        return

    table = Table(title="Gmail Connections")
    table.add_column("ID", justify="right")
    table.add_column("User")
    table.add_column("Mailbox")
    table.add_column("Active", justify="center")
    table.add_column("Token expires")
    for connection in connections:
        table.add_row(
            str(connection.id),
            connection.user_id,
            connection.email,
            "[green]yes[/green]" if connection.is_active else "[red]no[/red]",
            _format_ms(connection.token_expires_at),
        )
    console.print(table)


def display_status(scan: ScanProgress | None, imp: ImportProgress | None) -> None:
    """Show the latest scan and import progress for one connection."""
    if scan is None:
        console.print(Panel("[dim]No scan has run yet.[/dim]", title="Scan"))
    else:
        lines = [
            f"[bold]Status:[/bold] {scan.status.value}",
            f"[bold]Processed:[/bold] {scan.processed_emails} / {scan.total_emails}",
            f"[bold]Senders found:[/bold] {scan.senders_found}",
            f"[bold]Started:[/bold] {_format_ms(scan.started_at)}",
            f"[bold]Completed:[/bold] {_format_ms(scan.completed_at)}",
        ]
        if scan.error:
            lines.append(f"[bold red]Error:[/bold red] {scan.error}")
        console.print(Panel("\n".join(lines), title="Scan"))

    if imp is None:
        console.print(Panel("[dim]No import has run yet.[/dim]", title="Import"))
        return

    lines = [
        f"[bold]Status:[/bold] {imp.status.value}",
        f"[bold]Imported:[/bold] {imp.imported_emails} / {imp.total_emails}",
        f"[bold]Skipped:[/bold] {imp.skipped_emails}",
        f"[bold]Failed:[/bold] {imp.failed_emails}",
        f"[bold]Started:[/bold] {_format_ms(imp.started_at)}",
        f"[bold]Completed:[/bold] {_format_ms(imp.completed_at)}",
    ]
    if imp.error:
        lines.append(f"[bold red]Error:[/bold red] {imp.error}")
    console.print(Panel("\n".join(lines), title="Import"))


def display_import_summary(result: RunResult) -> None:
    """Display a success summary after an import."""
    console.print(
        Panel(
            f"[bold green]Imported {result.imported_count} newsletters[/bold green] "
            f"({result.skipped_count} duplicates skipped, {result.failed_count} failed).",
            title="Done",
        )
    )
