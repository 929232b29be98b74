"""Job Engine CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import JobEngineClient, JobEngineClientError
from .commands import config, jobs, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobengine",
    help="⚙️ Job Engine - Background job CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")
app.command("worker")(worker.run_worker)


@app.command()
def status():
    """📊 Check system status and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobEngineClient(base_url) as client:
            health = client.health_check()

            queue = health.get("queue") or {}
            console.print(Panel(
                f"🚀 [green]Connected Successfully![/green]\n\n"
                f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
                f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
                f"• Queue depth: [cyan]{queue.get('queue_depth', 'unknown')}[/cyan]\n"
                f"• Stale leases: [red]{queue.get('stale_leases', 'unknown')}[/red]\n"
                f"• API URL: [blue]{base_url}[/blue]",
                title="System Status",
                border_style="green"
            ))

    except JobEngineClientError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Job Engine API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]jobengine config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None


if __name__ == "__main__":
    app()
