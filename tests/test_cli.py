import io

import pytest
from rich.console import Console

from conftest import remote_playlist
from listui.cli import app as cli_app
from listui.cli.formatters import format_error_with_suggestions, playlists_table
from listui.cli.player_view import PlayerView
from listui.exceptions import MetadataUnavailable, PlaylistNotFound
from listui.models.library import SourceKind, TrackDescriptor
from listui.models.events import TrackFailed
from listui.models.playback import FetchResult


def render(renderable) -> str:
    console = Console(file=io.StringIO(), width=100, height=40, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


def test_error_panel_lists_reasons_per_instance():
    error = MetadataUnavailable(
        "Could not fetch playlist.", {"https://a.example": "Connection refused"}
    )
    text = render(format_error_with_suggestions(error))
    assert "MetadataUnavailable" in text
    assert "https://a.example" in text
    assert "Connection refused" in text


def test_playlists_table():
    playlist, _ = remote_playlist(2)
    text = render(playlists_table([playlist], {playlist.id: (2, 1)}))
    assert "Mix" in text
    assert "1/2" in text


def test_player_view_shows_failures_in_the_banner(engine, fetcher):
    console = Console(file=io.StringIO(), width=100, height=40, color_system=None)
    view = PlayerView(console, engine)
    engine.open(*remote_playlist(3))
    engine.play()
    fetcher.last("vid1").finish(FetchResult.failed("ERROR: Video unavailable"))
    engine.process_pending()

    assert view.banner == "Could not play 'Song 1': ERROR: Video unavailable"

    view._layout = view._create_layout()
    view.refresh()
    text = render(view._layout)
    assert "Song 1" in text
    assert "press p to retry" in text


def test_player_view_selection_stays_in_range(engine):
    view = PlayerView(Console(file=io.StringIO()), engine)
    engine.open(*remote_playlist(3))
    view.move_selection(10)
    assert view.selection == 2
    view.move_selection(-10)
    assert view.selection == 0


def test_banner_for_unknown_track(engine):
    view = PlayerView(Console(file=io.StringIO()), engine)
    engine.events.emit(TrackFailed(9, "gone"))
    assert view.banner == "Could not play 'track 9': gone"


class UnreachableResolver:
    def __init__(self, error):
        self.error = error
        self.calls = []

    async def resolve_remote_playlist(self, url_or_id, on_progress=None):
        self.calls.append(url_or_id)
        raise self.error


@pytest.fixture
def quiet_console(monkeypatch):
    console = Console(file=io.StringIO(), width=100, color_system=None)
    monkeypatch.setattr(cli_app, "console", console)
    return console


@pytest.mark.asyncio
async def test_unreachable_backends_fall_back_to_saved_playlists(
    store, quiet_console, monkeypatch
):
    saved = store.save_playlist("Cached Mix", SourceKind.REMOTE, remote_id="PLcached0000")
    store.save_tracks(saved.id, [TrackDescriptor(title="Song a", remote_id="a")])
    monkeypatch.setattr(cli_app.typer, "prompt", lambda *args, **kwargs: str(saved.id))
    resolver = UnreachableResolver(
        MetadataUnavailable("Could not fetch playlist.", {"https://a.example": "timed out"})
    )

    playlist, tracks = await cli_app._resolve_target(
        "https://www.youtube.com/playlist?list=PLnew00000000", store, resolver
    )

    assert resolver.calls
    assert playlist.id == saved.id
    assert [track.remote_id for track in tracks] == ["a"]
    output = quiet_console.file.getvalue()
    assert "MetadataUnavailable" in output
    assert "Cached Mix" in output


@pytest.mark.asyncio
async def test_unknown_remote_playlist_is_not_masked_by_the_picker(store, quiet_console):
    resolver = UnreachableResolver(PlaylistNotFound("No such playlist."))
    with pytest.raises(PlaylistNotFound):
        await cli_app._resolve_target(
            "https://www.youtube.com/playlist?list=PLnew00000000", store, resolver
        )
