"""CLI: studyplan progress, studyplan stats, studyplan sweep"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from studyplan.models.session import ProgressStatus
from studyplan.stats import overall

console = Console()


def _get_planner():
    from studyplan.cli.main import _get_planner
    return _get_planner()


def _run(coro):
    from studyplan.cli.main import _run
    return _run(coro)


def _owner() -> str:
    from studyplan.cli.main import _setting
    return _setting("owner_id")


@click.command("progress")
@click.argument("session_id")
@click.argument("status", type=click.Choice([s.value for s in ProgressStatus]))
@click.option("--notes", default=None)
@click.option("--duration", "duration_minutes", default=None, type=click.FloatRange(min=0), help="Minutes actually studied")
def progress_cmd(session_id: str, status: str, notes: Optional[str], duration_minutes: Optional[float]):
    """Move a session to a new progress status."""

    async def _progress():
        async with _get_planner() as planner:
            session = await planner.update_progress(
                session_id, {"status": status, "notes": notes, "duration_minutes": duration_minutes},
            )
        line = f"[green]{session.title}: {session.progress.status.value}[/green]"
        if session.progress.duration_minutes is not None:
            line += f" ({session.progress.duration_minutes:g} min)"
        console.print(line)

    _run(_progress())


@click.command("stats")
@click.option("--json-output", "--json", is_flag=True)
def stats_cmd(json_output: bool):
    """Show study statistics per category."""

    async def _stats():
        async with _get_planner() as planner:
            stats = await planner.get_statistics(_owner())
        if json_output:
            click.echo(json.dumps({c.value: s.model_dump() for c, s in stats.items()}, indent=2))
            return
        table = Table(title="Study statistics")
        table.add_column("Category", style="bold")
        table.add_column("Sessions", justify="right")
        table.add_column("Completed", justify="right")
        table.add_column("Total min", justify="right")
        table.add_column("Avg min", justify="right")
        rows = sorted(stats.items(), key=lambda item: item[0].value)
        for category, s in rows:
            table.add_row(category.value, str(s.total_sessions), str(s.completed_sessions),
                          f"{s.total_duration_minutes:g}", f"{s.average_duration_minutes:g}")
        if rows:
            t = overall(stats)
            table.add_row("all", str(t.total_sessions), str(t.completed_sessions),
                          f"{t.total_duration_minutes:g}", f"{t.average_duration_minutes:g}", style="dim")
        console.print(table)

    _run(_stats())


@click.command("sweep")
def sweep_cmd():
    """Mark ended sessions that never started as missed."""

    async def _sweep():
        async with _get_planner() as planner:
            missed = await planner.sweep_missed(_owner())
        console.print(f"[green]{len(missed)} session(s) marked missed.[/green]")

    _run(_sweep())
