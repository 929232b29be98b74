"""Jobs Commands - Enqueue, inspect and cancel background jobs"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import JobEngineClient, JobEngineClientError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job commands")


def _client() -> JobEngineClient:
    return JobEngineClient(config.get("api.base_url"), config.get("api.tenant_id"))


@app.command("enqueue")
def enqueue_job(
    type: str = typer.Argument(..., help="Job type"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", "-m", help="Attempts before failure is terminal"
    ),
):
    """➕ Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None

    try:
        with _client() as client:
            result = client.enqueue_job(type, payload_data, max_attempts)
            print_success(f"Enqueued job {result.get('job_id')} ({result.get('status')})")

    except JobEngineClientError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by type"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    try:
        with _client() as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)

            jobs = data.get("jobs", [])
            total = data.get("total", len(jobs))

            if not jobs:
                console.print(Panel(
                    "📭 [yellow]No jobs found![/yellow]\n\n"
                    f"Filters applied:\n"
                    f"• Status: {', '.join(status) if status else 'any'}\n"
                    f"• Type: {type or 'any'}",
                    title="Empty Results",
                    border_style="yellow"
                ))
                return

            console.print(create_jobs_table(jobs))
            console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")

            if offset + limit < total:
                console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")

    except JobEngineClientError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job ID to show"),
):
    """🔍 Show a job's full record"""
    try:
        with _client() as client:
            job = client.get_job(job_id)
            console.print(create_job_panel(job))

            if job.get("payload") not in (None, {}):
                console.print("\n[bold blue]Payload:[/bold blue]")
                console.print_json(data=job["payload"])

    except JobEngineClientError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("stats")
def show_stats():
    """📊 Show job statistics"""
    try:
        with _client() as client:
            print_info("Fetching job statistics...")
            console.print(create_stats_panel(client.get_job_stats()))

    except JobEngineClientError as e:
        print_error(f"Failed to get job statistics: {e}")
        raise typer.Exit(1) from None


@app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job ID to cancel"),
):
    """🛑 Cancel a pending or processing job"""
    try:
        with _client() as client:
            client.cancel_job(job_id)
            print_success(f"Canceled job {job_id}")

    except JobEngineClientError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None
