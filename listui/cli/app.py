"""
The `listui` command line: library management commands and the interactive
player.
"""

import asyncio
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import aiohttp
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from listui import __version__
from listui.api.client import MetadataResolver
from listui.core.engine import PlaybackEngine
from listui.exceptions import (
    ListuiError,
    MetadataUnavailable,
    NotReady,
    PlaylistNotFound,
)
from listui.media.fetcher import Fetcher
from listui.media.local import load_directory
from listui.media.output import MpvOutput, NullOutput
from listui.models.config import PlayerConfig
from listui.models.library import Playlist, SourceKind, Track
from listui.storage.config_manager import ConfigManager
from listui.storage.track_store import TrackStore
from listui.utils.path import create_dir, get_config_dir, parse_playlist_url

from .formatters import (
    format_error_with_suggestions,
    playlists_table,
    print_config,
    print_doctor_row,
)
from .keys import KeyReader
from .player_view import PlayerView

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("listui")

app = typer.Typer(
    name="listui",
    help=(
        "A terminal music player for YouTube playlists and local folders. Use"
        " 'listui <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(**cli_options) -> PlayerConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


@contextmanager
def _log_to_file(log_path: Path, level: str = "INFO"):
    """Sends log records to a file while the full-screen player owns the terminal."""
    root = logging.getLogger()
    saved_level = log.level
    log.setLevel(min(log.getEffectiveLevel(), logging.getLevelName(level)))
    console_handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
    create_dir(log_path.parent)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    for handler in console_handlers:
        root.removeHandler(handler)
    root.addHandler(file_handler)
    try:
        yield
    finally:
        root.removeHandler(file_handler)
        file_handler.close()
        log.setLevel(saved_level)
        for handler in console_handlers:
            root.addHandler(handler)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Terminal music player for YouTube playlists."""
    if version:
        console.print(f"[bold]listui[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    log.setLevel(log_level)

    if show_config:
        config = _load_config()
        config_data = {key: getattr(config, key) for key in PlayerConfig.get_ini_keys()}
        print_config(CONFIG_FILE, config_data)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        asyncio.run(_player_async(_load_config(), None))


@app.command()
def play(
    playlist: Optional[str] = typer.Argument(
        None,
        help="A YouTube playlist URL, a saved playlist (id or title) or a directory.",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Go through the motions without producing sound."
    ),
    shuffle: Optional[bool] = typer.Option(
        None, "--shuffle/--no-shuffle", help="Start with shuffle on or off."
    ),
    repeat: Optional[bool] = typer.Option(
        None, "--repeat/--no-repeat", help="Start over when the playlist ends."
    ),
):
    """Open the player, optionally on a given playlist."""
    config = _load_config(dry_run=dry_run, shuffle=shuffle, repeat=repeat)
    asyncio.run(_player_async(config, playlist))


@app.command()
def add(url: str = typer.Argument(..., help="URL or id of a YouTube playlist.")):
    """Save a YouTube playlist to your library."""
    config = _load_config()

    async def _add_async():
        store = TrackStore(config.database_file)
        async with MetadataResolver.from_config(config) as resolver:
            playlist, tracks = await _import_playlist(store, resolver, url)
        console.print(
            f"[green]✓ Saved [bold]{escape(playlist.title)}[/bold] with {len(tracks)} tracks "
            f"(id {playlist.id}).[/green]"
        )

    asyncio.run(_add_async())


@app.command()
def update(playlist: str = typer.Argument(..., help="Id or title of a saved playlist.")):
    """Refresh a saved playlist from YouTube (or rescan its directory)."""
    config = _load_config()

    async def _update_async():
        store = TrackStore(config.database_file)
        saved = store.find_playlist(playlist)
        before = {track.id for track in store.get_tracks(saved.id)}
        if saved.is_remote:
            async with MetadataResolver.from_config(config) as resolver:
                with console.status(f"[cyan]Fetching {escape(saved.title)}…[/cyan]") as status:
                    remote = await resolver.resolve_remote_playlist(
                        saved.remote_id,
                        lambda count: status.update(f"[cyan]Fetched {count} tracks…[/cyan]"),
                    )
            if remote.title and remote.title != saved.title:
                store.rename_playlist(saved.id, remote.title)
            tracks = store.replace_tracks(saved.id, remote.tracks)
        else:
            _, scanned = load_directory(saved.directory, playlist_id=saved.id)
            tracks = store.replace_tracks(saved.id, scanned)
        after = {track.id for track in tracks}
        console.print(
            f"[green]✓ Updated [bold]{escape(saved.title)}[/bold]:[/green] "
            f"{len(after - before)} added, {len(before - after)} removed, "
            f"{len(tracks)} total."
        )

    asyncio.run(_update_async())


@app.command()
def remove(
    playlist: str = typer.Argument(..., help="Id or title of a saved playlist."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Remove a playlist from your library. Downloaded files are kept."""
    config = _load_config()
    store = TrackStore(config.database_file)
    saved = store.find_playlist(playlist)
    if not force and not typer.confirm(f"Remove '{saved.title}' from your library?"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()
    store.delete_playlist(saved.id)
    console.print(f"[green]✓ Removed [bold]{escape(saved.title)}[/bold].[/green]")


@app.command(name="list")
def list_command():
    """List the saved playlists."""
    config = _load_config()
    store = TrackStore(config.database_file)
    playlists = store.list_playlists()
    if not playlists:
        console.print(
            "[yellow]No saved playlists yet.[/yellow] "
            "Try: [cyan]listui add <PLAYLIST URL>[/cyan]"
        )
        return
    console.print(playlists_table(playlists, store.track_counts()))


@app.command()
def doctor():
    """Diagnose common configuration, tool and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False

    try:
        config = _load_config()
        print_doctor_row(console, True, f"Configuration is valid: [dim]{CONFIG_FILE}[/dim]")
    except ListuiError as e:
        print_doctor_row(console, False, f"Configuration validation failed: {e}")
        raise typer.Exit(code=1) from e

    for tool in (config.downloader, config.decoder, config.player):
        found = shutil.which(tool)
        print_doctor_row(console, bool(found), f"{tool}: {found or 'not found on PATH'}")
        issues_found = issues_found or not found

    try:
        store = TrackStore(config.database_file)
        count = len(store.list_playlists())
        print_doctor_row(console, True, f"Library opened with {count} playlist(s).")
    except ListuiError as e:
        print_doctor_row(console, False, f"Library is unusable: {e}")
        issues_found = True

    console.print("\n[dim]Testing connectivity to the metadata backends...[/dim]")

    async def test_connection(url: str) -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with (
                aiohttp.ClientSession(timeout=timeout) as session,
                session.get(url) as resp,
            ):
                ok = resp.status < 500
                print_doctor_row(console, ok, f"{url} (status {resp.status})")
                return ok
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            print_doctor_row(console, False, f"{url}: {str(e) or type(e).__name__}")
            return False

    async def test_all() -> bool:
        if config.youtube_api_key:
            return await test_connection(MetadataResolver.YOUTUBE_API_URL)
        results = await asyncio.gather(
            *(test_connection(instance) for instance in config.invidious_instances)
        )
        return any(results)

    if not asyncio.run(test_all()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ Ready to play.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some checks failed; see the rows marked ✗ above.[/bold red]\n"
        )


# Player


async def _import_playlist(
    store: TrackStore, resolver: MetadataResolver, url: str
) -> tuple[Playlist, list[Track]]:
    with console.status("[cyan]Fetching playlist…[/cyan]") as status:
        remote = await resolver.resolve_remote_playlist(
            url, lambda count: status.update(f"[cyan]Fetched {count} tracks…[/cyan]")
        )
    playlist = store.save_playlist(
        remote.title, SourceKind.REMOTE, remote_id=remote.remote_id
    )
    tracks = store.save_tracks(playlist.id, remote.tracks)
    return playlist, tracks


def _pick_playlist(store: TrackStore) -> Optional[tuple[Playlist, list[Track]]]:
    playlists = store.list_playlists()
    if not playlists:
        console.print(
            "[yellow]No saved playlists yet.[/yellow] "
            "Try: [cyan]listui play <PLAYLIST URL or DIRECTORY>[/cyan]"
        )
        return None
    console.print(playlists_table(playlists, store.track_counts()))
    choice = typer.prompt("Playlist id", default=str(playlists[0].id))
    playlist = store.find_playlist(choice)
    return playlist, store.get_tracks(playlist.id)


async def _resolve_target(
    target: Optional[str], store: TrackStore, resolver: MetadataResolver
) -> Optional[tuple[Playlist, list[Track]]]:
    if target is None:
        return _pick_playlist(store)

    if Path(target).expanduser().is_dir():
        return load_directory(target)

    remote_id = parse_playlist_url(target)
    if remote_id is None:
        playlist = store.find_playlist(target)
        return playlist, store.get_tracks(playlist.id)

    try:
        playlist = store.find_playlist(remote_id)
        return playlist, store.get_tracks(playlist.id)
    except PlaylistNotFound:
        pass

    try:
        return await _import_playlist(store, resolver, target)
    except PlaylistNotFound:
        raise
    except MetadataUnavailable as e:
        console.print(format_error_with_suggestions(e))
        console.print("[yellow]Showing your saved playlists instead.[/yellow]")
        return _pick_playlist(store)


def _apply_key(engine: PlaybackEngine, view: PlayerView, key: str, config: PlayerConfig):
    session = engine.session
    if key == "p":
        engine.toggle_pause()
    elif key == "n":
        engine.skip_next()
    elif key == "b":
        engine.skip_prev()
    elif key == "s":
        engine.stop()
    elif key == "r":
        engine.toggle_shuffle()
        view.selection = session.cursor
    elif key == "R":
        engine.set_repeat(not session.repeat)
    elif key in ("+", "="):
        engine.change_volume(config.volume_step)
    elif key == "-":
        engine.change_volume(-config.volume_step)
    elif key.isdigit():
        engine.seek_percentage(int(key) * 10)
    elif key == "LEFT":
        engine.rewind(config.seek_seconds)
    elif key == "RIGHT":
        engine.forward(config.seek_seconds)
    elif key == "UP":
        view.move_selection(-1)
    elif key == "DOWN":
        view.move_selection(1)
    elif key == "ENTER":
        engine.play_index(view.selection)


async def _handle_keys(
    engine: PlaybackEngine, view: PlayerView, keys: KeyReader, config: PlayerConfig
):
    while True:
        key = await keys.get()
        if key in ("q", "Q"):
            return
        view.clear_banner()
        try:
            _apply_key(engine, view, key, config)
        except NotReady as e:
            log.debug(f"Ignored key {key!r}: {e}")
        except ListuiError as e:
            view.show_banner(str(e))
        view.refresh()


async def _player_async(config: PlayerConfig, target: Optional[str]):
    store = TrackStore(config.database_file)
    fetcher = Fetcher.from_config(config)
    output = NullOutput() if config.dry_run else MpvOutput(config.player)
    resolver = MetadataResolver.from_config(config)
    try:
        selected = await _resolve_target(target, store, resolver)
        if selected is None:
            return
        playlist, tracks = selected
        if not tracks:
            console.print(f"[yellow]'{escape(playlist.title)}' has no tracks.[/yellow]")
            return
        if isinstance(output, MpvOutput):
            await output.start()

        engine = PlaybackEngine(
            fetcher,
            output,
            store,
            volume=config.volume,
            shuffle=config.shuffle,
            repeat=config.repeat,
        )
        view = PlayerView(console, engine)
        engine.open(playlist, tracks)

        with _log_to_file(config.log_path, config.log_level):
            async with view, KeyReader() as keys:
                runner = asyncio.create_task(engine.run())
                refresher = asyncio.create_task(view.run_refresh())
                try:
                    await _handle_keys(engine, view, keys, config)
                finally:
                    runner.cancel()
                    refresher.cancel()
                    await asyncio.gather(runner, refresher, return_exceptions=True)
                    engine.close()
    finally:
        await fetcher.close()
        await resolver.close()
        await output.close()
