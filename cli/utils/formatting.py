"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Created", justify="left", style="blue")
    table.add_column("Last Error", justify="left", style="white")

    for job in jobs:
        last_error = job.get("last_error") or "—"
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("type", ""),
            format_status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("created_at", ""),
            last_error[:50] + "..." if len(last_error) > 50 else last_error,
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel with a job's full record"""
    content = f"""
🆔 [bold]ID:[/bold] [cyan]{job.get('id')}[/cyan]
🏢 [bold]Tenant:[/bold] {job.get('tenant_id')}
📝 [bold]Type:[/bold] [magenta]{job.get('type')}[/magenta]
📊 [bold]Status:[/bold] {format_status(job.get('status', ''))}
🔁 [bold]Attempts:[/bold] [yellow]{job.get('attempts')}/{job.get('max_attempts')}[/yellow]
🔒 [bold]Lease:[/bold] {job.get('lease_owner') or '—'} until {job.get('lease_expires_at') or '—'}
⏳ [bold]Not before:[/bold] {job.get('not_before_at') or '—'}
❌ [bold]Last error:[/bold] {job.get('last_error') or '—'} ({job.get('error_code') or '—'})
📅 [bold]Created:[/bold] [blue]{job.get('created_at')}[/blue]
🕑 [bold]Updated:[/bold] [blue]{job.get('updated_at')}[/blue]
"""
    return Panel(content.strip(), title="Job", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for job statistics"""
    by_status = "\n".join(
        f"• {format_status(status)}: {count}"
        for status, count in stats.get("by_status", {}).items()
    )
    by_type = "\n".join(
        f"• [magenta]{job_type}[/magenta]: {count}"
        for job_type, count in sorted(stats.get("by_type", {}).items())
    ) or "• —"

    content = f"""
📊 [bold blue]Job Statistics[/bold blue]

• Total jobs: [cyan]{stats.get('total_jobs', 0)}[/cyan]
• Queue depth: [yellow]{stats.get('queue_depth', 0)}[/yellow]
• Stale leases: [red]{stats.get('stale_leases', 0)}[/red]

[bold]By status:[/bold]
{by_status}

[bold]By type:[/bold]
{by_type}
"""
    return Panel(content.strip(), title="Job Statistics", border_style="green")
