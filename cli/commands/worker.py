"""Worker Command - Run the job worker in this process"""

import asyncio
import signal
from contextlib import suppress

import typer
from rich.console import Console
from rich.panel import Panel

from jobengine.config.logging import setup_logging
from jobengine.config.settings import Settings, get_settings
from jobengine.infra.database import Database
from jobengine.v1.jobs.events import LoggingEventSink
from jobengine.v1.jobs.registry_init import load_handler_modules
from jobengine.v1.jobs.worker import JobWorker, create_worker

from ..utils.formatting import print_error, print_info, print_success

console = Console()


def run_worker(
    types: list[str] | None = typer.Option(
        None, "--type", "-t", help="Only claim this job type (repeatable)"
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Concurrent handler slots"
    ),
    handlers: list[str] | None = typer.Option(
        None, "--handlers", "-H", help="Module that registers handlers (repeatable)"
    ),
    database_url: str | None = typer.Option(
        None, "--database-url", envvar="DATABASE_URL", help="Job store URL"
    ),
    worker_id: str | None = typer.Option(None, "--worker-id", help="Worker identity"),
    create_tables: bool = typer.Option(
        False, "--create-tables", help="Create the jobs table before starting"
    ),
    drain: bool = typer.Option(
        False, "--drain", help="Process eligible jobs until none are left, then exit"
    ),
):
    """⚙️ Run a job worker"""
    overrides = {
        "job_types": types,
        "job_concurrency": concurrency,
        "job_handler_modules": handlers,
        "database_url": database_url,
        "worker_id": worker_id,
    }
    worker_settings = get_settings().model_copy(
        update={key: value for key, value in overrides.items() if value}
    )

    try:
        registered = load_handler_modules(worker_settings.job_handler_modules)
    except ImportError as e:
        print_error(f"Failed to load handler module: {e}")
        raise typer.Exit(1) from None

    if not registered:
        print_info("No job handlers registered; claimed jobs will fail as UnknownJobType")

    console.print(Panel(
        f"• Types: [magenta]{', '.join(worker_settings.job_types) or 'all'}[/magenta]\n"
        f"• Concurrency: [cyan]{worker_settings.job_concurrency}[/cyan]\n"
        f"• Handlers: [green]{', '.join(registered) or '—'}[/green]",
        title="Job Worker",
        border_style="blue",
    ))

    processed = asyncio.run(_serve(worker_settings, create_tables, drain))
    if drain:
        print_success(f"Processed {processed} job(s)")


async def _serve(worker_settings: Settings, create_tables: bool, drain: bool) -> int:
    setup_logging(worker_settings)
    database = Database(worker_settings)

    try:
        if create_tables:
            await database.create_all()

        worker = create_worker(
            worker_settings, database.SessionLocal, event_sink=LoggingEventSink()
        )

        if drain:
            return await _drain(worker)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is unavailable on Windows event loops
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, worker.request_stop)

        await worker.run()
        return 0
    finally:
        await database.close()


async def _drain(worker: JobWorker) -> int:
    await worker.reap_once()
    processed = 0
    while await worker.run_once():
        processed += 1
    return processed
