"""CLI: studyplan sessions create|list|update|delete"""

import json

import click
from rich.console import Console
from rich.table import Table

from studyplan.models.session import Category, Frequency, SessionInstance

console = Console()

CATEGORY = click.Choice([c.value for c in Category])
FREQUENCY = click.Choice([f.value for f in Frequency])


def _get_planner():
    from studyplan.cli.main import _get_planner
    return _get_planner()


def _run(coro):
    from studyplan.cli.main import _run
    return _run(coro)


def _owner() -> str:
    from studyplan.cli.main import _setting
    return _setting("owner_id")


def _localize(value):
    from studyplan.cli.main import _localize
    return _localize(value)


def _datetime_type() -> click.DateTime:
    from studyplan.cli.main import DATETIME_FORMATS
    return click.DateTime(formats=DATETIME_FORMATS)


def _sessions_table(title: str, rows: list[SessionInstance]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="bold")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Status")
    table.add_column("Reminder")
    for s in rows:
        reminder = ""
        if s.reminder:
            reminder = f"{s.reminder.lead_minutes}m" + (" (sent)" if s.reminder.fired else "")
        table.add_row(
            s.id, s.title, s.category.value,
            s.start_time.strftime("%Y-%m-%d %H:%M"), s.end_time.strftime("%H:%M"),
            s.progress.status.value, reminder,
        )
    return table


@click.group()
def sessions():
    """Study session management."""


@sessions.command("create")
@click.option("--title", required=True)
@click.option("--category", required=True, type=CATEGORY)
@click.option("--start", "start", required=True, type=_datetime_type())
@click.option("--end", "end", required=True, type=_datetime_type())
@click.option("--description", default=None)
@click.option("--course", "course_id", default=None)
@click.option("--frequency", default=None, type=FREQUENCY, help="Repeat daily, weekly or monthly")
@click.option("--until", default=None, type=_datetime_type(), help="Last possible start of a repeat")
@click.option("--reminder", "lead_minutes", default=None, type=click.IntRange(min=0), help="Remind N minutes before start")
def sessions_create(title, category, start, end, description, course_id, frequency, until, lead_minutes):
    """Create a study session, optionally recurring."""
    if (frequency is None) != (until is None):
        raise click.UsageError("--frequency and --until must be given together")
    definition = {
        "title": title,
        "category": category,
        "start_time": _localize(start),
        "end_time": _localize(end),
        "description": description,
        "course_id": course_id,
    }
    if frequency:
        definition["recurrence"] = {"frequency": frequency, "until": _localize(until)}
    if lead_minutes is not None:
        definition["reminder"] = {"lead_minutes": lead_minutes}

    async def _create():
        async with _get_planner() as planner:
            created = await planner.create_session(_owner(), definition)
        console.print(_sessions_table(f"Created {len(created)} session(s)", created))

    _run(_create())


@sessions.command("list")
@click.option("--from", "start_from", default=None, type=_datetime_type())
@click.option("--to", "start_to", default=None, type=_datetime_type())
@click.option("--category", default=None, type=CATEGORY)
@click.option("--course", "course_id", default=None)
@click.option("--json-output", "--json", is_flag=True)
def sessions_list(start_from, start_to, category, course_id, json_output):
    """List sessions, ordered by start time."""
    filter = {
        "start_from": _localize(start_from),
        "start_to": _localize(start_to),
        "category": category,
        "course_id": course_id,
    }

    async def _list():
        async with _get_planner() as planner:
            result = await planner.list_sessions(_owner(), filter)
        if json_output:
            click.echo(json.dumps([s.model_dump(mode="json") for s in result], indent=2))
            return
        console.print(_sessions_table(f"Sessions ({len(result)} total)", result))

    _run(_list())


@sessions.command("update")
@click.argument("session_id")
@click.option("--title", default=None)
@click.option("--category", default=None, type=CATEGORY)
@click.option("--start", "start", default=None, type=_datetime_type())
@click.option("--end", "end", default=None, type=_datetime_type())
@click.option("--description", default=None)
@click.option("--reminder", "lead_minutes", default=None, type=click.IntRange(min=0))
@click.option("--no-reminder", is_flag=True, help="Remove the reminder")
def sessions_update(session_id, title, category, start, end, description, lead_minutes, no_reminder):
    """Edit one session."""
    patch: dict = {}
    for key, value in (("title", title), ("category", category), ("description", description),
                       ("start_time", _localize(start)), ("end_time", _localize(end))):
        if value is not None:
            patch[key] = value
    if no_reminder:
        patch["reminder"] = None
    elif lead_minutes is not None:
        patch["reminder"] = {"lead_minutes": lead_minutes}
    if not patch:
        raise click.UsageError("Nothing to update")

    async def _update():
        async with _get_planner() as planner:
            updated = await planner.update_session(session_id, patch)
        console.print(_sessions_table("Updated", [updated]))

    _run(_update())


@sessions.command("delete")
@click.argument("session_id")
def sessions_delete(session_id: str):
    """Delete a session and cancel its reminder."""

    async def _delete():
        async with _get_planner() as planner:
            with console.status("Deleting..."):
                await planner.delete_session(session_id)
        console.print(f"[green]Session {session_id} deleted.[/green]")

    _run(_delete())
