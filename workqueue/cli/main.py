"""workqueue CLI - run workers and inspect the queue"""

import asyncio
import importlib
import signal
from typing import Optional
from uuid import UUID

import typer

from workqueue.config.logging import setup_logging
from workqueue.config.settings import get_settings
from workqueue.infra.database import Database
from workqueue.jobs.service import JobService
from workqueue.jobs.store import JobStore
from workqueue.jobs.worker import JobWorker

from .formatting import (
    console,
    create_failed_jobs_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
)

app = typer.Typer(
    name="workqueue",
    help="Database-backed job queue",
    rich_markup_mode="rich",
)

DatabaseUrlOption = typer.Option(
    None, "--database-url", help="Override DATABASE_URL from the environment"
)


def _database(database_url: str | None) -> Database:
    return Database(get_settings(), database_url)


def _preload(modules: list[str]) -> None:
    # Payload classes register themselves when their module is imported
    for module in modules:
        importlib.import_module(module)


@app.command("init-db")
def init_db(database_url: Optional[str] = DatabaseUrlOption):
    """Create the jobs table"""

    async def _run():
        database = _database(database_url)
        try:
            await database.create_all()
        finally:
            await database.close()

    asyncio.run(_run())
    print_success("Jobs table ready")


@app.command("work")
def work(
    name: Optional[str] = typer.Option(None, help="Worker name (default host:pid)"),
    exit_when_empty: bool = typer.Option(
        False, "--exit-when-empty", help="Stop once no job is available"
    ),
    preload: list[str] = typer.Option(
        [], "--import", help="Module defining payload classes; repeatable"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override LOG_LEVEL, e.g. DEBUG"
    ),
    database_url: Optional[str] = DatabaseUrlOption,
):
    """Start a worker and poll until interrupted"""
    setup_logging(log_level)
    _preload(preload)
    settings = get_settings()

    async def _run():
        database = _database(database_url)
        worker = JobWorker(JobStore(database.SessionLocal), settings, name=name)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, worker.stop)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                pass

        try:
            await worker.start(exit_when_empty=exit_when_empty)
        finally:
            await database.close()

    asyncio.run(_run())


@app.command("work-off")
def work_off(
    num: int = typer.Option(100, "--num", "-n", min=1, help="Maximum jobs to run"),
    preload: list[str] = typer.Option(
        [], "--import", help="Module defining payload classes; repeatable"
    ),
    database_url: Optional[str] = DatabaseUrlOption,
):
    """Run up to NUM available jobs and exit"""
    _preload(preload)
    settings = get_settings()

    async def _run():
        database = _database(database_url)
        try:
            worker = JobWorker(JobStore(database.SessionLocal), settings)
            return await worker.work_off(num)
        finally:
            await database.close()

    success, failure = asyncio.run(_run())
    console.print(f"{success + failure} jobs processed: {success} succeeded, {failure} failed")
    if failure:
        raise typer.Exit(1)


@app.command("stats")
def stats(database_url: Optional[str] = DatabaseUrlOption):
    """Show job counts by state"""

    async def _run():
        database = _database(database_url)
        try:
            service = JobService(get_settings(), JobStore(database.SessionLocal))
            return await service.get_stats()
        finally:
            await database.close()

    console.print(create_stats_table(asyncio.run(_run())))


@app.command("failed")
def failed(
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum jobs to list"),
    database_url: Optional[str] = DatabaseUrlOption,
):
    """List permanently failed jobs"""

    async def _run():
        database = _database(database_url)
        try:
            service = JobService(get_settings(), JobStore(database.SessionLocal))
            return await service.list_failed(limit)
        finally:
            await database.close()

    jobs = asyncio.run(_run())
    if not jobs:
        print_info("No failed jobs")
        return
    console.print(create_failed_jobs_table(jobs))


@app.command("retry")
def retry(
    job_id: str = typer.Argument(..., help="Failed job id"),
    database_url: Optional[str] = DatabaseUrlOption,
):
    """Requeue a permanently failed job"""
    try:
        parsed = UUID(job_id)
    except ValueError:
        print_error(f"Not a job id: {job_id}")
        raise typer.Exit(1) from None

    async def _run():
        database = _database(database_url)
        try:
            service = JobService(get_settings(), JobStore(database.SessionLocal))
            return await service.retry_failed(parsed)
        finally:
            await database.close()

    if not asyncio.run(_run()):
        print_error(f"No failed job with id {job_id}")
        raise typer.Exit(1)
    print_success(f"Requeued {job_id}")


def main():
    app()


if __name__ == "__main__":
    main()
