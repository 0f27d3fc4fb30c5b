"""Rich formatting helpers for CLI output"""

from rich import box
from rich.console import Console
from rich.table import Table

from workqueue.jobs.codec import type_id_from_blob
from workqueue.jobs.models import Job

console = Console()


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_stats_table(stats: dict[str, int]) -> Table:
    table = Table(title="Queue", box=box.ROUNDED)
    table.add_column("State", justify="left", style="cyan")
    table.add_column("Jobs", justify="right", style="bold")

    for state in ("pending", "locked", "failed", "total"):
        table.add_row(state, str(stats.get(state, 0)))

    return table


def create_failed_jobs_table(jobs: list[Job]) -> Table:
    """Table of permanently failed jobs with the first line of their last error"""
    table = Table(title="Failed jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Payload", justify="left", style="magenta")
    table.add_column("Attempts", justify="right", style="yellow")
    table.add_column("Failed at", justify="center")
    table.add_column("Last error", justify="left", style="red")

    for job in jobs:
        last_line = (job.last_error or "").strip().splitlines()
        table.add_row(
            str(job.id)[:8],
            type_id_from_blob(job.handler) or "—",
            str(job.attempts),
            job.failed_at.isoformat(timespec="seconds") if job.failed_at else "—",
            last_line[-1] if last_line else "—",
        )

    return table
