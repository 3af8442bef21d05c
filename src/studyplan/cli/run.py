"""CLI: studyplan run"""

import asyncio
import logging

import click
from rich.console import Console

console = Console()


def _get_planner():
    from studyplan.cli.main import _get_planner
    return _get_planner()


def _run(coro):
    from studyplan.cli.main import _run
    return _run(coro)


@click.command("run")
def run_cmd():
    """Deliver reminders and sweep missed sessions until interrupted."""
    logging.getLogger("studyplan").setLevel(min(logging.getLogger().level, logging.INFO))

    async def _serve():
        async with _get_planner() as planner:
            armed = await planner.restore_reminders()
            planner.start_sweeper(rearm=True)
            console.print(f"[cyan]{armed} reminder(s) armed. Ctrl+C to stop.[/cyan]")
            await asyncio.Event().wait()

    try:
        _run(_serve())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
