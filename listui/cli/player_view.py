"""
Renders the interactive player with a Rich Live layout: a header, the track
being played with its progress, the play order, the upcoming tracks and a
banner for errors that do not stop the player.
"""

import asyncio
import logging
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from listui.core.engine import PlaybackEngine
from listui.models.events import ToolMissing, TrackFailed, TransportChanged
from listui.models.playback import PlayerSnapshot, SlotState, TransportState
from listui.utils.formatting import format_position, truncate

log = logging.getLogger(__name__)

SLOT_GLYPHS = {
    SlotState.RESOLVED: "[green]✓[/green]",
    SlotState.FETCHING: "[cyan]↓[/cyan]",
    SlotState.FAILED: "[red]✗[/red]",
    SlotState.UNRESOLVED: "[dim]·[/dim]",
}

TRANSPORT_LABELS = {
    TransportState.PLAYING: "[green]▶ Playing[/green]",
    TransportState.PAUSED: "[yellow]⏸ Paused[/yellow]",
    TransportState.STOPPED: "[dim]■ Stopped[/dim]",
}

KEY_HELP = (
    "[bold]p[/] pause  [bold]n[/]/[bold]b[/] next/back  [bold]r[/] shuffle  "
    "[bold]R[/] repeat  [bold]+[/]/[bold]-[/] volume  [bold]0-9[/] seek  "
    "[bold]←/→[/] rewind/forward  [bold]↑/↓ Enter[/] pick  [bold]s[/] stop  [bold]q[/] quit"
)


class PlayerView:
    """Keeps a Live display in sync with a `PlaybackEngine`."""

    def __init__(self, console: Console, engine: PlaybackEngine):
        self.console = console
        self.engine = engine
        self.selection = 0
        self.banner: Optional[str] = None
        self._live: Optional[Live] = None
        self._layout: Optional[Layout] = None
        engine.events.on_track_failed(self._on_track_failed)
        engine.events.on_tool_missing(self._on_tool_missing)
        engine.events.on_transport_changed(self._on_transport_changed)

    # Event listeners

    def _on_track_failed(self, event: TrackFailed):
        session = self.engine.session
        track = session.tracks.get(event.track_id) if session else None
        title = track.title if track else f"track {event.track_id}"
        self.show_banner(f"Could not play '{title}': {event.reason}")

    def _on_tool_missing(self, event: ToolMissing):
        self.show_banner(
            f"Missing {', '.join(event.tools)}: only downloaded tracks can be played."
        )

    def _on_transport_changed(self, event: TransportChanged):
        session = self.engine.session
        if session is not None and event.state is TransportState.PLAYING:
            self.selection = session.cursor

    def show_banner(self, message: str):
        self.banner = message
        self.refresh()

    def clear_banner(self):
        self.banner = None

    # Selection

    def move_selection(self, delta: int):
        session = self.engine.session
        if session is None or not len(session.order):
            return
        self.selection = max(0, min(len(session.order) - 1, self.selection + delta))

    # Rendering

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="now_playing", size=6),
            Layout(name="body", ratio=1),
            Layout(name="footer", size=4),
        )
        layout["body"].split_row(
            Layout(name="tracks", ratio=2),
            Layout(name="up_next", ratio=1),
        )
        return layout

    def _generate_header(self, snapshot: PlayerSnapshot) -> Panel:
        header_text = Text()
        header_text.append("🎵 listui ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(snapshot.playlist_title, style="yellow")
        header_text.append(" │ ", style="dim")
        header_text.append(f"🔊 {snapshot.volume}%", style="magenta")
        if snapshot.shuffle:
            header_text.append(" │ 🔀 shuffle", style="cyan")
        if snapshot.repeat:
            header_text.append(" │ 🔁 repeat", style="cyan")
        return Panel(header_text, border_style="cyan")

    def _generate_now_playing(self, snapshot: PlayerSnapshot) -> Panel:
        grid = Table.grid(padding=(0, 1), expand=True)
        grid.add_column(ratio=1)
        track = snapshot.track
        if track is None:
            grid.add_row(Text("The playlist is empty.", style="dim italic"))
            return Panel(grid, title="[bold]Now Playing[/bold]", border_style="green")

        grid.add_row(
            f"{TRANSPORT_LABELS[snapshot.transport]}  "
            f"[bold]{escape(truncate(track.title, self.console.width - 20))}[/bold]"
        )
        if snapshot.transport is not TransportState.STOPPED:
            completed = snapshot.elapsed
            total = snapshot.duration or max(snapshot.elapsed, 1.0)
            label = format_position(
                snapshot.elapsed,
                snapshot.duration,
                paused=snapshot.transport is TransportState.PAUSED,
            )
            style = "green"
        elif snapshot.slot is SlotState.FETCHING:
            completed, total = snapshot.download_progress, 1.0
            label = f"Downloading… {snapshot.download_progress * 100:.0f}%"
            style = "cyan"
        elif snapshot.slot is SlotState.FAILED:
            reason = self.engine.failure_reason(track.id) or "download failed"
            completed, total = 0.0, 1.0
            label = f"[red]Failed:[/red] {escape(reason)}  (press p to retry)"
            style = "red"
        else:
            completed, total = 0.0, 1.0
            label = "Press p to play"
            style = "dim"
        grid.add_row(
            ProgressBar(total=total, completed=completed, complete_style=style)
        )
        grid.add_row(label)
        title = f"[bold]Now Playing[/bold] ({snapshot.cursor + 1}/{snapshot.track_count})"
        return Panel(grid, title=title, border_style="green")

    def _generate_tracks(self, snapshot: PlayerSnapshot) -> Panel:
        session = self.engine.session
        table = Table.grid(padding=(0, 1), expand=True)
        table.add_column(width=2)
        table.add_column(justify="right", style="dim", width=5)
        table.add_column(ratio=1, no_wrap=True)
        table.add_column(width=2)

        visible = max(1, self.console.height - 17)
        order = session.order.track_ids if session else ()
        start = max(0, min(self.selection - visible // 2, len(order) - visible))
        for position in range(start, min(len(order), start + visible)):
            track = session.tracks[order[position]]
            marker = "[green]▶[/green]" if position == snapshot.cursor else ""
            title = escape(track.title)
            if position == self.selection:
                title = f"[reverse]{title}[/reverse]"
            table.add_row(
                marker, str(position + 1), title, SLOT_GLYPHS[self.engine.slot_state(track)]
            )
        order_name = "Shuffled order" if snapshot.shuffle else "Playlist"
        return Panel(table, title=f"[bold]{order_name}[/bold]", border_style="blue")

    def _generate_up_next(self, snapshot: PlayerSnapshot) -> Panel:
        if not snapshot.upcoming:
            body = Text("Nothing queued.", style="dim italic", justify="center")
        else:
            body = Table.grid(padding=(0, 1))
            body.add_column(style="dim", justify="right")
            body.add_column(no_wrap=True)
            for offset, track in enumerate(snapshot.upcoming, start=1):
                body.add_row(f"{offset}.", escape(track.title))
        return Panel(body, title="[bold]Up Next[/bold]", border_style="magenta")

    def _generate_footer(self) -> Panel:
        grid = Table.grid()
        if self.banner:
            grid.add_row(f"[bold yellow]⚠ {escape(self.banner)}[/bold yellow]")
        grid.add_row(Text.from_markup(KEY_HELP, style="dim"))
        return Panel(grid, border_style="yellow" if self.banner else "dim")

    def refresh(self):
        if not self._layout:
            return
        snapshot = self.engine.snapshot(upcoming=8)
        if snapshot is None:
            return
        self._layout["header"].update(self._generate_header(snapshot))
        self._layout["now_playing"].update(self._generate_now_playing(snapshot))
        self._layout["tracks"].update(self._generate_tracks(snapshot))
        self._layout["up_next"].update(self._generate_up_next(snapshot))
        self._layout["footer"].update(self._generate_footer())

    async def run_refresh(self, interval: float = 0.25):
        """Redraws periodically so elapsed time and download progress move."""
        while True:
            self.refresh()
            await asyncio.sleep(interval)

    async def __aenter__(self) -> "PlayerView":
        session = self.engine.session
        self.selection = session.cursor if session else 0
        self._layout = self._create_layout()
        self.refresh()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=8,
            screen=True,
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            self._live.stop()
            self._live = None
