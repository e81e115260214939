from __future__ import annotations

import sqlite3
import sys
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from .config import config_path, ensure_paths, get_config, get_settings, open_config_in_editor
from .feed import MatchRecordError, import_matches, read_feed_file
from .insights import get_current_session, get_insights, performance_summary, refresh as refresh_insights
from .store import Store


app = typer.Typer(add_completion=False, no_args_is_help=True, help="Session & tilt analytics for competitive players")
console = Console()


@app.callback()
def main_callback() -> None:
    ensure_paths()


def _user(user: Optional[str]) -> str:
    user = user or get_config()["player"].get("user_id")
    if not user:
        rprint("[red]No user id. Pass --user or set player.user_id in the config.[/red]")
        raise typer.Exit(code=1)
    return user


def _game(game: Optional[str]) -> Optional[str]:
    return game or get_config()["player"].get("default_game") or None


@app.command("import-matches")
def import_matches_cmd(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of canonical match records"),
    user: Optional[str] = typer.Option(None, help="Owner of records that carry no userId"),
):
    """Load match records from the ingestion layer into the local store."""
    store = Store()
    try:
        n = import_matches(store, read_feed_file(path), user_id=user)
    except MatchRecordError as e:
        rprint(f"[red]Invalid match record:[/red] {e}")
        raise typer.Exit(code=1)
    rprint(f"[green]Imported[/green] {n} matches.")


@app.command()
def insights(
    user: Optional[str] = typer.Option(None, help="User id"),
    game: Optional[str] = typer.Option(None, help="Game tag, e.g. cs2"),
    refresh: bool = typer.Option(False, "--refresh", help="Force recomputation of the stored aggregate"),
):
    settings = get_settings()
    data = get_insights(Store(), _user(user), _game(game), force_refresh=refresh, settings=settings)
    console.print_json(data=data.to_dict())


@app.command()
def summary(
    user: Optional[str] = typer.Option(None, help="User id"),
    game: Optional[str] = typer.Option(None, help="Game tag"),
):
    """Best/worst times, optimal session length and recommendations."""
    settings = get_settings()
    data = performance_summary(get_insights(Store(), _user(user), _game(game), settings=settings))
    table = Table(title="Performance summary", show_header=False)
    for key, value in data.items():
        if key == "recommendations":
            continue
        table.add_row(key.replace("_", " "), "-" if value is None else str(value))
    console.print(table)
    for line in data["recommendations"]:
        rprint(f"[cyan]•[/cyan] {line}")


@app.command()
def current(
    user: Optional[str] = typer.Option(None, help="User id"),
    game: Optional[str] = typer.Option(None, help="Game tag"),
):
    settings = get_settings()
    session = get_current_session(Store(), _user(user), _game(game), settings=settings)
    if session is None:
        rprint("[yellow]Not in a session.[/yellow]")
        return
    console.print_json(data=session.to_summary())


@app.command()
def refresh(
    user: Optional[str] = typer.Option(None, help="User id"),
    game: Optional[str] = typer.Option(None, help="Game tag"),
):
    settings = get_settings()
    out = refresh_insights(Store(), _user(user), _game(game), settings=settings)
    rprint(f"[green]New sessions detected:[/green] {out['new_sessions_detected']}")
    rprint(f"[green]Matches analyzed:[/green] {out['insights'].total_matches_analyzed}")


@app.command()
def config(
    action: str = typer.Argument("show", help="show|edit|path"),
):
    if action == "show":
        rprint(Path(config_path()).read_text())
    elif action == "path":
        rprint(config_path())
    elif action == "edit":
        opened = open_config_in_editor()
        if not opened:
            rprint("[yellow]Could not open editor. Edit the file manually:[/yellow]")
            rprint(config_path())
    else:
        rprint("[red]Unknown action. Use show|edit|path[/red]")


@app.command()
def doctor():
    ok = True
    rprint("[bold]Config[/bold]", config_path())
    if not Path(config_path()).exists():
        rprint("[red]Missing config file[/red]")
        ok = False
    try:
        store = Store()
        rprint("[bold]DB[/bold]", store.db_path)
        rprint(f"[green]Schema version[/green] {store.get_meta('schema_version')}")
        rprint(f"[green]Users with matches[/green] {len(store.distinct_users())}")
    except sqlite3.Error as e:
        rprint(f"[red]Database error[/red]: {e}")
        ok = False
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    app()
