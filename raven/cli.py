from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import click
import typer
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import console as console_module
from . import mods as mods_module
from .cache import ArtifactError
from .config import (
    ConfigError,
    RavenConfig,
    USER_CONFIG_PATH,
    load_config,
    load_user_config,
)
from .game import GameError
from .logs import configure_logging
from .modlinks import RepositoryError
from .mods import BatchReport, InstallError

app = typer.Typer(help="Mod installer for Death's Door (raven)")
config_app = typer.Typer(help="Inspect stored settings")

app.add_typer(config_app, name="config")

_rich_console = Console()

# Whole-command failures; per-mod failures are reported, not raised.
_COMMAND_ERRORS = (ConfigError, RepositoryError, GameError, ArtifactError, InstallError)


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _get_config(ctx: typer.Context) -> RavenConfig:
    if ctx.obj is None:
        ctx.obj = {}
    cfg = ctx.obj.get("config")
    if cfg is None:
        try:
            cfg = load_config()
        except ConfigError as exc:
            _fail(str(exc), code=2)
        ctx.obj["config"] = cfg
    return cfg


def _print_report(report: BatchReport) -> None:
    if report.missing is not None:
        typer.secho(str(report.missing), fg="yellow")
    for outcome in report.outcomes:
        typer.secho(outcome.message, fg="green" if outcome.ok else "red")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    ctx.obj = ctx.obj or {}
    configure_logging(verbose)


@app.command("setup")
def setup_command(
    ctx: typer.Context,
    location: Path = typer.Argument(..., help="Game directory or path to DeathsDoor.exe"),
):
    """Install BepInEx into the game and remember where the game lives."""
    cfg = _get_config(ctx)
    try:
        game_dir = mods_module.setup_game(cfg, location=location)
    except _COMMAND_ERRORS as exc:
        _fail(f"setup at {location}: {exc}")
    typer.secho(f"Game location set to {game_dir}", fg="green")
    typer.secho(f"Saved to {USER_CONFIG_PATH}", fg="cyan")


@app.command("install")
def install_command(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Mod names or unambiguous fragments"),
):
    """Install mods and everything they depend on."""
    cfg = _get_config(ctx)
    try:
        report = mods_module.install_mods(cfg, names=names)
    except _COMMAND_ERRORS as exc:
        _fail(str(exc))
    _print_report(report)


@app.command("yeet")
def yeet_command(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Installed mod names or unambiguous fragments"),
):
    """Uninstall mods."""
    cfg = _get_config(ctx)
    try:
        report = mods_module.yeet_mods(cfg, names=names)
    except _COMMAND_ERRORS as exc:
        _fail(str(exc))
    _print_report(report)


@app.command("list")
def list_command(
    ctx: typer.Context,
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Display detailed information about mods"),
    installed: bool = typer.Option(False, "--installed", "-i", help="Show only installed mods"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Only mods whose name contains this term"),
):
    """List mods available in the repository."""
    cfg = _get_config(ctx)
    try:
        listings = mods_module.list_mods(cfg, installed_only=installed, search=search)
    except _COMMAND_ERRORS as exc:
        _fail(str(exc))

    placeholder = "N/A"
    table = Table(box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    if detailed:
        table.add_column("Repository")
        table.add_column("Dependencies")
        table.add_column("Description")
    for listing in listings:
        if not listing.known:
            status = Text("installed, unknown", style="yellow")
        elif listing.installed:
            status = Text("installed", style="green")
        else:
            status = Text("-", style="bright_black")
        row = [listing.name, status]
        if detailed:
            mod = listing.mod
            if mod is None:
                row += [placeholder, placeholder, placeholder]
            else:
                row += [
                    mod.repository or "-",
                    ", ".join(mod.dependencies) or "none",
                    mod.description,
                ]
        table.add_row(*row)
    _rich_console.print(table)


@app.command("console")
def console_command(ctx: typer.Context):
    """Run commands interactively until 'exit'."""

    command = typer.main.get_command(app)

    def dispatch(args: List[str]) -> None:
        try:
            command.main(args=args, prog_name="raven", standalone_mode=False)
        except click.ClickException as exc:
            raise console_module.ConsoleError(exc.format_message()) from exc
        except click.Abort as exc:
            raise console_module.ConsoleError("aborted") from exc

    def report_error(exc: Exception) -> None:
        typer.secho(str(exc), err=True, fg="red")

    console_module.run_console(dispatch, report_error=report_error)


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display the effective settings."""
    cfg = _get_config(ctx)
    try:
        stored = load_user_config()
    except ConfigError as exc:
        _fail(str(exc), code=2)
    table = Table(title="Settings", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Game location", str(cfg.game_location) if cfg.game_location else "(not set)")
    table.add_row("Stored game location", stored.game_location or "(not set)")
    table.add_row("Cache dir", str(cfg.cache_dir))
    table.add_row("Modlinks URL", cfg.modlinks_url)
    table.add_row("File", str(USER_CONFIG_PATH))
    _rich_console.print(table)
