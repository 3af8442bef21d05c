"""CLI: studyplan config show|set"""

import click
from rich.console import Console
from rich.table import Table

console = Console()

NUMERIC_KEYS = {"sweep_interval_s"}


def _load_config() -> dict:
    from studyplan.cli.main import _load_config
    return _load_config()


def _save_config(cfg: dict) -> None:
    from studyplan.cli.main import _save_config
    _save_config(cfg)


def _defaults() -> dict:
    from studyplan.cli.main import DEFAULTS
    return DEFAULTS


@click.group()
def config():
    """Configuration commands."""


@config.command("show")
def config_show():
    """Show the effective configuration."""
    cfg = _load_config()
    table = Table(title="studyplan config")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key, default in _defaults().items():
        value = cfg.get(key, default)
        table.add_row(key, "" if value is None else str(value), "config" if key in cfg else "default")
    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value."""
    if key not in _defaults():
        raise click.BadParameter(f"Unknown key {key!r}. Known: {', '.join(_defaults())}", param_hint="KEY")
    cfg = _load_config()
    if key in NUMERIC_KEYS:
        try:
            cfg[key] = float(value)
        except ValueError:
            raise click.BadParameter(f"{key} must be a number", param_hint="VALUE")
    else:
        cfg[key] = value
    _save_config(cfg)
    console.print(f"[green]{key} = {cfg[key]}[/green]")
