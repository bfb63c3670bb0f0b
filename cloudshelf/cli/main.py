# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import json
from datetime import datetime
from typing import List, Optional
import typer
from rich.console import Console
from rich.progress import Progress
from rich.table import Table
from ..core.config import Config
from ..core.exceptions import CloudShelfError
from ..core.models import LibraryType
from ..core import projections
from ..services.container import Services

app = typer.Typer(help="CloudShelf - Index and enrich media libraries on remote storage.")
library_app = typer.Typer(help="Manage libraries.")
app.add_typer(library_app, name="library")
console = Console()


def _load(config_path: str) -> Services:
    try:
        config = Config.load(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1)
    return Services(config)


def _fail(e: CloudShelfError):
    console.print(f"[red]Error:[/red] {e.message}")
    raise typer.Exit(1)


def _when(ts: Optional[float]) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M") if ts else "-"


@library_app.command("add")
def library_add(
    name: str,
    type: LibraryType,
    roots: List[str] = typer.Argument(..., help="Remote roots, e.g. gdrive:Movies or /mnt/media"),
    config_path: str = "config.yaml",
):
    """
    Create a library.
    """
    services = _load(config_path)
    library = services.libraries.create(name, type, roots)
    console.print(f"[green]Created library[/green] {library.name} ([cyan]{library.id}[/cyan])")


@library_app.command("list")
def library_list(config_path: str = "config.yaml"):
    services = _load(config_path)
    table = Table(title="Libraries")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Type", style="green")
    table.add_column("Roots")
    table.add_column("Items", justify="right")
    for library in services.libraries.list():
        table.add_row(
            library.id,
            library.name,
            library.type.value,
            ", ".join(library.root_paths),
            str(services.store.media.count_by_library(library.id)),
        )
    console.print(table)


@library_app.command("update")
def library_update(
    library_id: str,
    name: Optional[str] = None,
    type: Optional[LibraryType] = None,
    root: Optional[List[str]] = typer.Option(None, help="Replaces all roots; repeat for several"),
    config_path: str = "config.yaml",
):
    services = _load(config_path)
    try:
        library = services.libraries.update(library_id, name=name, type=type, root_paths=root or None)
    except CloudShelfError as e:
        _fail(e)
    console.print(f"[green]Updated[/green] {library.name}")


@library_app.command("remove")
def library_remove(library_id: str, config_path: str = "config.yaml"):
    """
    Remove a library and its items. Watch progress is kept.
    """
    services = _load(config_path)
    try:
        removed = services.libraries.remove(library_id)
    except CloudShelfError as e:
        _fail(e)
    console.print(f"[green]Removed library and {removed} items.[/green]")


@app.command("scan")
def scan(library_id: Optional[str] = None, config_path: str = "config.yaml"):
    """
    Scan one library, or all of them, against the remote.
    """
    services = _load(config_path)
    if library_id:
        try:
            libraries = [services.libraries.get(library_id)]
        except CloudShelfError as e:
            _fail(e)
    else:
        libraries = services.libraries.list()

    if not libraries:
        console.print("[yellow]No libraries configured.[/yellow]")
        return

    async def run():
        summaries = []
        for library in libraries:
            try:
                summary = await services.scan.scan_library(library)
            except CloudShelfError as e:
                console.print(f"[red]{library.name}:[/red] {e.message}")
                continue
            if summary:
                summaries.append((library, summary))
        return summaries

    with Progress() as progress:
        task = progress.add_task("[green]Scanning...", total=100)

        def on_progress(event):
            progress.update(
                task,
                completed=event.progress or 0,
                description=f"[green]{event.current_library or 'Scanning'}",
            )

        unsubscribe = services.tracker.subscribe(on_progress)
        try:
            summaries = asyncio.run(run())
        finally:
            unsubscribe()

    for library, summary in summaries:
        console.print(
            f"{library.name}: [green]{summary.new_items} new[/green], "
            f"[yellow]{summary.removed} removed[/yellow], "
            f"{summary.metadata_failures} metadata failures"
        )
        for err in summary.listing_errors:
            console.print(f"  [yellow]{err}[/yellow]")


@app.command("list")
def list_items(
    library_id: Optional[str] = None,
    recent: bool = typer.Option(False, help="Only the most recently added items"),
    config_path: str = "config.yaml",
):
    """
    List catalogued items, newest first.
    """
    services = _load(config_path)
    items = services.store.media.get_all()
    if library_id:
        items = projections.select_items_by_library(items, library_id)
    if recent:
        items = projections.select_recently_added(items, services.config.recently_added_limit)

    table = Table(title="Media Items")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Year")
    table.add_column("Type", style="green")
    table.add_column("Match", style="yellow")
    table.add_column("Path")
    for item in items:
        title = item.title
        if item.season is not None and item.episode is not None:
            title = f"{item.show_title or item.title} S{item.season:02d}E{item.episode:02d}"
        table.add_row(
            item.id,
            title,
            str(item.year or ""),
            item.library_type.value,
            item.metadata_confidence.value,
            item.remote_path,
        )
    console.print(table)
    console.print(f"\n[bold]{len(items)}[/bold] items.")


@app.command("shows")
def shows(config_path: str = "config.yaml"):
    services = _load(config_path)
    table = Table(title="TV Shows")
    table.add_column("Show", style="magenta")
    table.add_column("Year")
    table.add_column("Seasons", justify="right")
    table.add_column("Episodes", justify="right")
    for show in projections.select_tv_shows(services.store.media.get_all()):
        table.add_row(show.title, str(show.year or ""), str(len(show.seasons)), str(show.episode_count))
    console.print(table)


@app.command("music")
def music(config_path: str = "config.yaml"):
    services = _load(config_path)
    table = Table(title="Artists")
    table.add_column("Artist", style="magenta")
    table.add_column("Albums", justify="right")
    table.add_column("Tracks", justify="right")
    for artist in projections.select_music_artists(services.store.media.get_all()):
        table.add_row(artist.name, str(artist.album_count), str(artist.track_count))
    console.print(table)


@app.command("continue")
def continue_watching(config_path: str = "config.yaml"):
    """
    Items started but not finished.
    """
    services = _load(config_path)
    entries = projections.select_in_progress(
        services.store.media.get_all(),
        services.store.progress.get_all(),
        min_watched=services.config.min_watched_seconds,
        limit=services.config.in_progress_limit,
    )
    table = Table(title="Continue Watching")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Position", justify="right")
    table.add_column("Last Watched")
    for entry in entries:
        p = entry.progress
        percent = f" ({p.position / p.duration:.0%})" if p.duration else ""
        table.add_row(entry.item.id, entry.item.title, f"{p.position:.0f}s{percent}", _when(p.last_watched_at))
    console.print(table)


@app.command("fix-match")
def fix_match(
    item_id: str,
    query: Optional[str] = None,
    pick: Optional[int] = typer.Option(None, help="Apply the candidate with this number"),
    config_path: str = "config.yaml",
):
    """
    Search alternative matches for an item and optionally apply one.
    """
    services = _load(config_path)
    try:
        candidates = asyncio.run(services.match.find_candidates(item_id, query))
    except CloudShelfError as e:
        _fail(e)

    if not candidates:
        console.print("[yellow]No candidates found.[/yellow]")
        return

    if pick is None:
        table = Table(title="Candidates")
        table.add_column("#", justify="right")
        table.add_column("Title", style="magenta")
        table.add_column("Year")
        table.add_column("ID", style="cyan")
        for i, c in enumerate(candidates, start=1):
            table.add_row(str(i), c.show_title or c.title or "?", str(c.year or ""), c.metadata_id or "")
        console.print(table)
        console.print("Re-run with [bold]--pick N[/bold] to apply one.")
        return

    if not 1 <= pick <= len(candidates):
        console.print(f"[red]Pick must be between 1 and {len(candidates)}.[/red]")
        raise typer.Exit(1)
    item = services.match.apply_match(item_id, candidates[pick - 1])
    console.print(f"[green]Matched[/green] {item.filename} -> {item.show_title or item.title}")


@app.command("progress")
def progress(
    item_id: str,
    position: Optional[float] = typer.Argument(None),
    duration: Optional[float] = typer.Argument(None),
    completed: bool = typer.Option(False, help="Mark the item as finished"),
    clear: bool = typer.Option(False, help="Forget the stored position"),
    config_path: str = "config.yaml",
):
    """
    Show or set the stored playback position of an item.
    """
    services = _load(config_path)
    playback = services.playback
    if clear:
        playback.clear(item_id)
        console.print("[green]Progress cleared.[/green]")
        return
    if completed:
        playback.mark_completed(item_id)
    elif position is not None:
        playback.report(item_id, position, duration or 0.0)
        playback.flush(item_id)

    p = services.store.progress.get(item_id)
    if p is None:
        console.print("[yellow]No progress stored.[/yellow]")
        return
    state = "completed" if p.completed else f"resume at {playback.resume_position(item_id):.0f}s"
    console.print(f"{item_id}: {p.position:.0f}/{p.duration:.0f}s, {state}")


@app.command("export")
def export_catalog(path: str, config_path: str = "config.yaml"):
    """
    Write the whole catalog to a JSON file.
    """
    services = _load(config_path)
    snapshot = services.store.export_snapshot()
    with open(path, "w", encoding="utf-8") as f:
        f.write(services.store.dumps(snapshot))
    console.print(f"[green]Exported {len(snapshot['media_items'])} items to {path}.[/green]")


@app.command("import")
def import_catalog(path: str, config_path: str = "config.yaml"):
    services = _load(config_path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    try:
        counts = services.store.import_snapshot(data)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(
        f"[green]Imported {counts['libraries']} libraries, {counts['media_items']} items, "
        f"{counts['watch_progress']} progress records.[/green]"
    )


if __name__ == "__main__":
    app()
