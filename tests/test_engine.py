import asyncio

import pytest

from conftest import remote_playlist
from listui.core.engine import PlaybackEngine
from listui.exceptions import MissingExternalTool, NotReady
from listui.models.events import (
    Command,
    CommandKind,
    FetchCompleted,
    Progress,
    ToolMissing,
    TrackEnded,
    TrackFailed,
    TrackReady,
    TransportChanged,
    VolumeChanged,
)
from listui.models.library import Playlist, SourceKind, Track
from listui.models.playback import DownloadState, FetchResult, SlotState, TransportState


@pytest.fixture
def local_playlist(audio_file):
    playlist = Playlist(id=0, title="Folder", source=SourceKind.LOCAL, directory="/music")
    tracks = [
        Track(id=i, title=f"Local {i}", local_path=audio_file(f"local{i}.mp3"))
        for i in range(1, 4)
    ]
    return playlist, tracks


@pytest.fixture
def events(engine):
    received = []
    engine.events.subscribe(received.append)
    return received


def of_type(events, event_type):
    return [event for event in events if isinstance(event, event_type)]


class TestSession:
    def test_open_starts_stopped_at_first_track(self, engine, events):
        playlist, tracks = remote_playlist(3)
        handle = engine.open(playlist, tracks)

        assert handle.track_count == 3
        assert engine.session.cursor == 0
        assert engine.session.transport is TransportState.STOPPED
        assert of_type(events, TransportChanged)[-1].state is TransportState.STOPPED

    def test_each_open_gets_a_new_generation(self, engine):
        first = engine.open(*remote_playlist(2))
        second = engine.open(*remote_playlist(2, playlist_id=2))
        assert second.generation > first.generation

    def test_commands_without_session_raise_not_ready(self, engine):
        with pytest.raises(NotReady):
            engine.play()

    def test_close_without_session_is_noop(self, engine):
        engine.close()
        assert engine.session is None

    def test_open_remote_playlist_reports_missing_tools(self, engine, fetcher, events):
        fetcher.missing = ["yt-dlp"]
        engine.open(*remote_playlist(2))
        assert of_type(events, ToolMissing) == [ToolMissing(("yt-dlp",))]

    def test_missing_tools_surface_on_play(self, engine, fetcher):
        fetcher.missing = ["yt-dlp", "ffmpeg"]
        engine.open(*remote_playlist(2))
        with pytest.raises(MissingExternalTool):
            engine.play()

    def test_missing_tools_are_reported_once_per_session(self, engine, fetcher, events):
        fetcher.missing = ["yt-dlp"]
        engine.open(*remote_playlist(3))
        for command in (engine.play, engine.skip_next, engine.skip_next):
            with pytest.raises(MissingExternalTool):
                command()
            assert engine.session.wants_playback is False
        assert len(of_type(events, ToolMissing)) == 1

        engine.open(*remote_playlist(3, playlist_id=2))
        assert len(of_type(events, ToolMissing)) == 2


class TestDownloads:
    def test_play_fetches_then_starts_when_download_lands(
        self, engine, fetcher, output, events, audio_file
    ):
        engine.open(*remote_playlist(3))
        engine.play()

        handle = fetcher.last("vid1")
        assert engine.slot_state(engine.session.current_track) is SlotState.FETCHING

        handle.progress(0.5)
        engine.process_pending()
        assert of_type(events, Progress) == [Progress(1, 0.5)]

        path = audio_file("vid1.mp3")
        handle.finish(FetchResult.resolved(path))
        engine.process_pending()

        assert output.loads == [path]
        assert engine.session.transport is TransportState.PLAYING
        assert of_type(events, TrackReady) == [TrackReady(1, path)]

    def test_progress_never_goes_backwards(self, engine, fetcher):
        engine.open(*remote_playlist(1))
        engine.play()
        handle = fetcher.last("vid1")
        handle.progress(0.6)
        handle.progress(0.3)
        engine.process_pending()
        assert engine.download_task(1).progress == 0.6
        assert engine.download_task(1).state is DownloadState.IN_PROGRESS

    def test_ensure_current_resolved_is_idempotent(self, engine, fetcher):
        engine.open(*remote_playlist(2))
        assert engine.ensure_current_resolved() is SlotState.FETCHING
        assert engine.ensure_current_resolved() is SlotState.FETCHING
        assert len(fetcher.handles_for("vid1")) == 1

    def test_skip_during_download_never_plays_the_left_track(
        self, engine, fetcher, output, audio_file
    ):
        engine.open(*remote_playlist(3))
        engine.play()
        engine.skip_next()

        first = fetcher.last("vid1")
        assert not first.cancelled
        assert engine.download_task(1).state is DownloadState.CANCELLED

        first.finish(FetchResult.resolved(audio_file("vid1.mp3")))
        engine.process_pending()
        assert output.loads == []
        assert engine.session.tracks[1].is_resolved

        second_path = audio_file("vid2.mp3")
        fetcher.last("vid2").finish(FetchResult.resolved(second_path))
        engine.process_pending()
        assert output.loads == [second_path]
        assert engine.session.current_track_id == 2

    def test_returning_to_a_track_reuses_its_download(self, engine, fetcher, output, audio_file):
        engine.open(*remote_playlist(3))
        engine.play()
        engine.skip_next()
        engine.skip_prev()

        assert len(fetcher.handles_for("vid1")) == 1
        assert engine.download_task(1).state is DownloadState.PENDING

        path = audio_file("vid1.mp3")
        fetcher.last("vid1").finish(FetchResult.resolved(path))
        engine.process_pending()
        assert output.loads == [path]

    def test_failed_download_stops_and_can_be_retried(self, engine, fetcher, events):
        engine.open(*remote_playlist(3))
        engine.play()
        fetcher.last("vid1").finish(FetchResult.failed("ERROR: Video unavailable"))
        engine.process_pending()

        assert of_type(events, TrackFailed) == [TrackFailed(1, "ERROR: Video unavailable")]
        assert engine.session.cursor == 0
        assert engine.session.transport is TransportState.STOPPED
        assert engine.slot_state(engine.session.current_track) is SlotState.FAILED

        engine.play()
        assert len(fetcher.handles_for("vid1")) == 2
        assert engine.failure_reason(1) is None
        assert engine.slot_state(engine.session.current_track) is SlotState.FETCHING

    def test_pause_while_fetching_cancels_the_pending_start(
        self, engine, fetcher, output, audio_file
    ):
        engine.open(*remote_playlist(2))
        engine.play()
        engine.pause()
        fetcher.last("vid1").finish(FetchResult.resolved(audio_file("vid1.mp3")))
        engine.process_pending()
        assert output.loads == []
        assert engine.session.tracks[1].is_resolved

    def test_open_discards_results_of_previous_session(self, engine, fetcher, output, audio_file):
        playlist, tracks = remote_playlist(3)
        old = engine.open(playlist, tracks)
        engine.play()
        old_handle = fetcher.last("vid1")

        engine.open(*remote_playlist(3, playlist_id=2))
        assert old_handle.cancelled and old_handle.terminated

        engine.post(
            FetchCompleted(
                tracks[0], old.generation, 1, FetchResult.resolved(audio_file("vid1.mp3"))
            )
        )
        engine.process_pending()
        assert output.loads == []
        assert engine.session.transport is TransportState.STOPPED
        assert not engine.session.tracks[1].is_resolved

    def test_missing_local_file_fails_the_track(self, engine, events, tmp_path):
        playlist = Playlist(id=0, title="Folder", source=SourceKind.LOCAL)
        track = Track(id=1, title="Gone", local_path=str(tmp_path / "gone.mp3"))
        engine.open(playlist, [track])
        engine.play()
        assert engine.slot_state(track) is SlotState.FAILED
        assert of_type(events, TrackFailed)[0].track_id == 1


class TestTransport:
    def test_track_end_advances_to_next(self, engine, output, local_playlist):
        playlist, tracks = local_playlist
        engine.open(playlist, tracks)
        engine.play()
        output.finish()
        engine.process_pending()

        assert engine.session.current_track_id == 2
        assert engine.session.transport is TransportState.PLAYING
        assert output.loads == [tracks[0].local_path, tracks[1].local_path]

    def test_stale_track_end_is_ignored(self, engine, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        stale = engine.session.token
        engine.skip_next()
        engine.post(TrackEnded(stale))
        engine.process_pending()
        assert engine.session.current_track_id == 2

    def test_end_of_order_stops(self, engine, local_playlist):
        engine.open(*local_playlist)
        engine.play_index(2)
        engine.skip_next()
        assert engine.session.transport is TransportState.STOPPED
        assert engine.session.cursor == 2

    def test_repeat_starts_over(self, engine, output, local_playlist):
        playlist, tracks = local_playlist
        engine.open(playlist, tracks)
        engine.set_repeat(True)
        engine.play_index(2)
        engine.skip_next()
        assert engine.session.cursor == 0
        assert engine.session.transport is TransportState.PLAYING
        assert output.path == tracks[0].local_path

    def test_skip_prev_on_first_track_restarts_it(self, engine, output, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        engine.skip_prev()
        assert engine.session.cursor == 0
        assert len(output.loads) == 2

    def test_play_index_out_of_range(self, engine, local_playlist):
        engine.open(*local_playlist)
        with pytest.raises(IndexError):
            engine.play_index(3)

    def test_pause_and_resume(self, engine, output, clock, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        clock.now = 10.0
        engine.toggle_pause()
        assert engine.session.transport is TransportState.PAUSED
        assert engine.session.position == 10.0

        clock.now = 50.0
        engine.toggle_pause()
        assert engine.session.transport is TransportState.PLAYING
        assert output.position() == 10.0

    def test_seek_needs_a_loaded_track(self, engine, local_playlist):
        engine.open(*local_playlist)
        with pytest.raises(NotReady):
            engine.seek(30)
        with pytest.raises(NotReady):
            engine.forward(15)

    def test_seek_moves_the_output(self, engine, output, clock, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        engine.seek(30)
        assert output.position() == 30
        clock.now = 5.0
        engine.rewind(100)
        assert output.position() == 0

    def test_seek_percentage_needs_a_duration(self, engine, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        with pytest.raises(NotReady):
            engine.seek_percentage(50)

    def test_volume_is_clamped(self, engine, output, events):
        assert engine.set_volume(150) == 100
        assert engine.change_volume(-130) == 0
        assert output.volume == 0
        assert of_type(events, VolumeChanged)[-1] == VolumeChanged(0)

    def test_dispatch(self, engine, output, local_playlist):
        engine.dispatch(Command(CommandKind.OPEN, local_playlist))
        engine.dispatch(Command(CommandKind.PLAY))
        engine.dispatch(Command(CommandKind.SKIP_NEXT))
        assert engine.session.current_track_id == 2
        engine.dispatch(Command(CommandKind.SET_VOLUME, 40))
        assert output.volume == 40
        engine.dispatch(Command(CommandKind.STOP))
        assert engine.session.transport is TransportState.STOPPED


class TestOrder:
    def test_toggle_shuffle_keeps_current_track(self, engine):
        engine.open(*remote_playlist(20))
        engine.play_index(7)
        current = engine.session.current_track_id

        assert engine.toggle_shuffle() is True
        assert engine.session.current_track_id == current
        assert sorted(engine.session.order.track_ids) == list(range(1, 21))

        assert engine.toggle_shuffle() is False
        assert engine.session.order.track_ids == tuple(range(1, 21))
        assert engine.session.current_track_id == current

    def test_upcoming_follows_the_order(self, engine):
        engine.open(*remote_playlist(5))
        assert [track.id for track in engine.upcoming(2)] == [2, 3]

    def test_replace_tracks_keeps_current_track(self, engine):
        playlist, tracks = remote_playlist(4)
        engine.open(playlist, tracks)
        engine.play_index(2)
        engine.replace_tracks([tracks[2], tracks[3]])
        assert engine.session.current_track_id == 3
        assert engine.session.cursor == 0

    def test_replace_tracks_dropping_current_stops(self, engine, local_playlist):
        playlist, tracks = local_playlist
        engine.open(playlist, tracks)
        engine.play_index(1)
        engine.replace_tracks([tracks[0], tracks[2]])
        assert engine.session.transport is TransportState.STOPPED
        assert engine.session.cursor == 0

    def test_replace_tracks_shorter_than_the_cursor(self, engine, fetcher, output, audio_file):
        playlist, tracks = remote_playlist(3)
        engine.open(playlist, tracks)
        engine.play_index(2)

        engine.replace_tracks([tracks[0]])

        assert engine.session.cursor == 0
        assert engine.session.current_track_id == 1
        assert engine.session.transport is TransportState.STOPPED
        assert engine.download_task(3).state is DownloadState.CANCELLED
        assert engine.download_task(1) is None

        fetcher.last("vid3").finish(FetchResult.resolved(audio_file("vid3.mp3")))
        engine.process_pending()
        assert output.loads == []

    def test_replace_tracks_regenerates_the_order(self, engine):
        playlist, tracks = remote_playlist(6)
        engine.open(playlist, tracks[:4])
        engine.toggle_shuffle()

        engine.replace_tracks([tracks[0], tracks[2], tracks[4], tracks[5]])

        assert sorted(engine.session.order.track_ids) == [1, 3, 5, 6]
        assert [track.id for track in engine.upcoming(10)] == list(
            engine.session.order.track_ids[engine.session.cursor + 1 :]
        )

    def test_snapshot(self, engine, local_playlist):
        engine.open(*local_playlist)
        engine.play()
        snapshot = engine.snapshot(upcoming=1)
        assert snapshot.playlist_title == "Folder"
        assert snapshot.slot is SlotState.RESOLVED
        assert [track.id for track in snapshot.upcoming] == [2]


class TestPersistence:
    def test_downloaded_path_is_saved(self, fetcher, output, store, audio_file):
        playlist = store.save_playlist("Mix", SourceKind.REMOTE, remote_id="PLmix0000000")
        tracks = store.save_tracks(playlist.id, remote_playlist(2)[1])
        engine = PlaybackEngine(fetcher, output, store)
        engine.open(playlist, tracks)
        engine.play()

        path = audio_file("vid1.mp3")
        fetcher.last("vid1").finish(FetchResult.resolved(path))
        engine.process_pending()
        assert store.get_tracks(playlist.id)[0].local_path == path

    def test_stale_download_is_still_saved(self, fetcher, output, store, audio_file):
        playlist = store.save_playlist("Mix", SourceKind.REMOTE, remote_id="PLmix0000000")
        tracks = store.save_tracks(playlist.id, remote_playlist(2)[1])
        engine = PlaybackEngine(fetcher, output, store)
        session = engine.open(playlist, tracks)
        engine.close()

        path = audio_file("vid1.mp3")
        engine.post(FetchCompleted(tracks[0], session.generation, 1, FetchResult.resolved(path)))
        engine.process_pending()
        assert store.get_tracks(playlist.id)[0].local_path == path

    def test_late_download_after_two_skips_is_saved_but_not_played(
        self, fetcher, output, store, audio_file
    ):
        playlist = store.save_playlist("Mix", SourceKind.REMOTE, remote_id="PLmix0000000")
        a, b, c = store.save_tracks(playlist.id, remote_playlist(3)[1])
        engine = PlaybackEngine(fetcher, output, store)
        engine.open(playlist, [a, b, c])
        engine.play()
        path_a = audio_file("vid1.mp3")
        fetcher.last("vid1").finish(FetchResult.resolved(path_a))
        engine.process_pending()

        engine.skip_next()
        assert engine.session.current_track_id == b.id
        engine.skip_next()
        assert engine.session.current_track_id == c.id

        path_b = audio_file("vid2.mp3")
        fetcher.last("vid2").finish(FetchResult.resolved(path_b))
        engine.process_pending()
        assert output.loads == [path_a]
        assert engine.session.current_track_id == c.id
        assert store.get_tracks(playlist.id)[1].local_path == path_b

        path_c = audio_file("vid3.mp3")
        fetcher.last("vid3").finish(FetchResult.resolved(path_c))
        engine.process_pending()
        assert output.loads == [path_a, path_c]

    def test_download_of_removed_track_is_not_saved(self, fetcher, output, store, audio_file):
        playlist = store.save_playlist("Mix", SourceKind.REMOTE, remote_id="PLmix0000000")
        a, b = store.save_tracks(playlist.id, remote_playlist(2)[1])
        engine = PlaybackEngine(fetcher, output, store)
        engine.open(playlist, [a, b])
        engine.play_index(1)

        engine.replace_tracks(store.replace_tracks(playlist.id, [a.descriptor()]))
        fetcher.last("vid2").finish(FetchResult.resolved(audio_file("vid2.mp3")))
        engine.process_pending()

        assert [track.remote_id for track in store.get_tracks(playlist.id)] == ["vid1"]

    def test_position_is_restored(self, fetcher, output, clock, store, audio_file):
        playlist = store.save_playlist("Folder", SourceKind.LOCAL, directory="/music")
        tracks = store.save_tracks(
            playlist.id,
            [
                Track(id=0, title=f"Local {i}", local_path=audio_file(f"local{i}.mp3"))
                for i in range(1, 4)
            ],
        )
        engine = PlaybackEngine(fetcher, output, store)
        engine.open(playlist, tracks)
        engine.play_index(1)
        clock.now = 42.0
        engine.close()

        saved = store.get_playlist(playlist.id)
        assert saved.last_track_id == tracks[1].id
        assert saved.last_position == 42.0

        engine.open(saved, store.get_tracks(playlist.id))
        assert engine.session.cursor == 1
        engine.play()
        assert output.position() == 42.0


@pytest.mark.asyncio
async def test_run_consumes_the_queue(engine, output, local_playlist):
    engine.open(*local_playlist)
    engine.play()
    runner = asyncio.create_task(engine.run())
    try:
        output.finish()
        await asyncio.wait_for(engine.queue.join(), timeout=1)
        assert engine.session.current_track_id == 2
    finally:
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)
