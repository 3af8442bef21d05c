"""
studyplan CLI — `studyplan` command.

Commands:
  studyplan sessions create|list|update|delete   Session management
  studyplan progress <id> <status>               Record progress
  studyplan stats                                Per-category study statistics
  studyplan sweep                                Mark ended, never-started sessions missed
  studyplan run                                  Deliver reminders until interrupted
  studyplan config show|set                      Manage ~/.studyplan/config.json
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install studyplan[cli]")

from studyplan.errors import StudyPlanError
from studyplan.notifications import LoggingSink, WebhookSink
from studyplan.planner import AsyncStudyPlanner
from studyplan.store import JsonFileSessionStore

console = Console()
CONFIG_FILE = Path.home() / ".studyplan" / "config.json"
DEFAULTS: dict[str, Any] = {
    "owner_id": "me",
    "store_path": str(Path.home() / ".studyplan" / "sessions.json"),
    "webhook_url": None,
    "timezone": "UTC",
    "sweep_interval_s": 300.0,
}
DATETIME_FORMATS = ["%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"]


def _load_config() -> dict:
    try:
        return json.loads(CONFIG_FILE.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def _save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(cfg, indent=2))


def _setting(key: str) -> Any:
    return _load_config().get(key, DEFAULTS[key])


def _localize(value: Optional[datetime]) -> Optional[datetime]:
    """Attach the configured timezone to a naive command-line datetime."""
    if value is None or value.tzinfo is not None:
        return value
    name = _setting("timezone")
    if name.upper() == "UTC":
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.replace(tzinfo=ZoneInfo(name))
    except ZoneInfoNotFoundError:
        raise click.BadParameter(f"Unknown timezone in config: {name}")


def _get_planner() -> AsyncStudyPlanner:
    cfg = {**DEFAULTS, **_load_config()}
    sink = WebhookSink(cfg["webhook_url"]) if cfg.get("webhook_url") else LoggingSink()
    return AsyncStudyPlanner(
        store=JsonFileSessionStore(cfg["store_path"]),
        sink=sink,
        sweep_interval_s=float(cfg["sweep_interval_s"]),
    )


def _run(coro):
    try:
        return asyncio.run(coro)
    except StudyPlanError as e:
        console.print(f"[red]{e.code}: {e}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """studyplan — plan recurring study sessions and track your progress."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# Register subcommands from separate modules
from studyplan.cli.config import config
from studyplan.cli.progress import progress_cmd, stats_cmd, sweep_cmd
from studyplan.cli.run import run_cmd
from studyplan.cli.sessions import sessions

main.add_command(config)
main.add_command(sessions)
main.add_command(progress_cmd)
main.add_command(stats_cmd)
main.add_command(sweep_cmd)
main.add_command(run_cmd)


if __name__ == "__main__":
    main()
