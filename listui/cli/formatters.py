"""
Rich renderables for the one-shot commands: error panels, the configuration,
the playlist table and the doctor checklist.
"""

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from listui.models.library import Playlist


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Builds the panel shown for a fatal error, with hints for known error types."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your config.ini.",
            "• Run `listui --show-config` to see what was loaded.",
            "• Delete the file to have a fresh default one written.",
        ],
        "MissingExternalTool": [
            "• Install yt-dlp and ffmpeg to play YouTube playlists.",
            "• Install mpv for audio playback.",
            "• Run `listui doctor` to see what is missing.",
        ],
        "MetadataUnavailable": [
            "• The Invidious instances may be down; try again later.",
            "• Add working instances to `invidious_instances` in the config.",
            "• Or set a `youtube_api_key` to use the official API.",
        ],
        "PlaylistNotFound": [
            "• Check that the playlist URL is correct and the playlist is public.",
            "• Run `listui list` to see the playlists you saved.",
        ],
        "DuplicatePlaylist": [
            "• The playlist is already saved; use `listui update <ID>` to refresh it.",
        ],
        "StoreCorrupt": [
            "• The playlist database could not be read.",
            "• Move the file named in the message away to start a new library.",
        ],
        "ClientConnectorError": [
            "• Could not connect; check your network connection.",
            "• Run `listui doctor` to test every configured backend.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    reasons = getattr(error, "reasons", None)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    if reasons:
        reason_table = Table.grid(padding=(0, 2))
        reason_table.add_column(style="dim")
        reason_table.add_column()
        for source, reason in reasons.items():
            reason_table.add_row(source, reason)
        content.add_row(reason_table)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]listui stopped[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding the API key."""
    console = Console()
    content = ""
    for key, value in sorted(config_data.items()):
        if key == "youtube_api_key" and value:
            value = "[hidden]"
        elif isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def playlists_table(
    playlists: list[Playlist], counts: dict[int, tuple[int, int]]
) -> Table:
    """Builds the table of saved playlists shown by `list` and the picker."""
    table = Table(title="Saved Playlists")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Source")
    table.add_column("Tracks", justify="right", style="green")
    table.add_column("Downloaded", justify="right")
    for playlist in playlists:
        total, downloaded = counts.get(playlist.id, (0, 0))
        source = (
            f"[magenta]{playlist.remote_id}[/magenta]"
            if playlist.is_remote
            else f"[dim]{playlist.directory}[/dim]"
        )
        table.add_row(
            str(playlist.id), escape(playlist.title), source, str(total), f"{downloaded}/{total}"
        )
    return table


def print_doctor_row(console: Console, ok: bool, message: str):
    mark = "[green]✓[/]" if ok else "[red]✗[/]"
    console.print(f"{mark} {message}")
