"""
The playback engine coordinates the current playlist, the play order, the
transport and the download tasks attached to tracks.

All engine state is owned by the event loop that runs `PlaybackEngine.run`.
Commands are plain synchronous methods that never block. Background work
(downloads, the audio output) only talks back through the engine's queue, and
every message coming off that queue passes through a single gate that checks
the session generation and the navigation token before it is allowed to start
playback.
"""

import asyncio
import itertools
import logging
from functools import partial
from typing import Any, Callable, Optional, Sequence

from listui.core.events import EventFeed
from listui.core.shuffle import BACKWARD, FORWARD, ShuffleSequencer
from listui.exceptions import ListuiError, MissingExternalTool, NotReady
from listui.models.events import (
    Command,
    CommandKind,
    FetchCompleted,
    FetchProgress,
    Progress,
    ToolMissing,
    TrackEnded,
    TrackFailed,
    TrackReady,
    TransportChanged,
    VolumeChanged,
)
from listui.models.library import Playlist, Track
from listui.models.playback import (
    DownloadState,
    DownloadTask,
    FetchResult,
    FetchStatus,
    PlaybackSession,
    PlayerSnapshot,
    SessionHandle,
    SlotState,
    TransportState,
)

log = logging.getLogger(__name__)

_ACTIVE_TRANSPORT = (TransportState.PLAYING, TransportState.PAUSED)


class PlaybackEngine:
    """
    Owns one playback session at a time.

    Args:
        fetcher: Object with a `fetch(descriptor, token, on_progress)` method
            returning a cancellable handle (see `listui.media.fetcher`).
        output: An `AudioOutput` implementation.
        store: Optional track store used to persist downloaded paths and the
            listening position.
    """

    def __init__(
        self,
        fetcher: Any,
        output: Any,
        store: Any = None,
        *,
        volume: int = 100,
        shuffle: bool = False,
        repeat: bool = False,
    ):
        self.fetcher = fetcher
        self.output = output
        self.store = store
        self.events = EventFeed()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.session: Optional[PlaybackSession] = None
        self.volume = _clamp_volume(volume)
        self.default_shuffle = shuffle
        self.default_repeat = repeat
        self._generation = 0
        self._tokens = itertools.count(1)
        self._serials = itertools.count(1)
        self._tasks: dict[int, DownloadTask] = {}
        self._failed: dict[int, str] = {}
        self._tools_reported = False
        self.output.set_volume(self.volume)

    # Session lifecycle

    def open(self, playlist: Playlist, tracks: Sequence[Track]) -> SessionHandle:
        """
        Starts a new session for `playlist`, tearing down the previous one.
        Results still in flight for the old session are ignored from now on.
        """
        if self.session is not None:
            self._teardown()

        self._tools_reported = False
        self._generation += 1
        shuffle = self.default_shuffle
        seed = ShuffleSequencer.new_seed() if shuffle else None
        track_map = {track.id: track for track in tracks}
        order = ShuffleSequencer.generate(
            [track.id for track in tracks], seed, self._generation
        )
        session = PlaybackSession(
            playlist=playlist,
            tracks=track_map,
            order=order,
            generation=self._generation,
            shuffle=shuffle,
            repeat=self.default_repeat,
            seed=seed,
        )

        if playlist.last_track_id is not None:
            restored = order.position_of(playlist.last_track_id)
            if restored is not None:
                session.cursor = restored
                session.position = max(0.0, playlist.last_position)

        self.session = session
        self._bump_token()
        log.info(
            f"Opened [bold]{playlist.title}[/bold] "
            f"({len(tracks)} tracks, generation {self._generation})"
        )
        self._set_transport(TransportState.STOPPED, force=True)
        if playlist.is_remote:
            missing = self.fetcher.missing_tools()
            if missing:
                self._report_missing_tools(missing)
        return SessionHandle(self._generation, playlist, len(tracks))

    def close(self):
        """Ends the current session. Calling it with no session is a no-op."""
        if self.session is None:
            return
        self._teardown()
        self._generation += 1
        self.events.emit(TransportChanged(TransportState.STOPPED, None))

    def _teardown(self):
        session = self.session
        self._save_position()
        self.output.stop()
        for task in self._tasks.values():
            if task.handle is not None and not task.handle.done():
                log.debug(f"Terminating download of track {task.track_id}")
                task.state = DownloadState.CANCELLED
                task.handle.cancel(terminate=True)
        self._tasks.clear()
        self._failed.clear()
        self._bump_token()
        log.debug(f"Closed session generation {session.generation}")
        self.session = None

    def replace_tracks(self, tracks: Sequence[Track]):
        """
        Swaps the track set of the open session, e.g. after a playlist update.
        The current track keeps playing if it is still part of the playlist.
        """
        session = self._require_session()
        current_id = session.current_track_id
        new_tracks = {track.id: track for track in tracks}
        removed = current_id is not None and current_id not in new_tracks
        if removed:
            log.info("The current track was removed from the playlist.")
            self._leave_current()

        session.tracks = new_tracks
        for track_id in [t for t in self._failed if t not in session.tracks]:
            del self._failed[track_id]
        self._regenerate_order()

        if current_id is not None and not removed:
            session.cursor = session.order.position_of(current_id)
            return
        session.cursor = 0
        if removed:
            self.output.stop()
            session.position = 0.0
            session.wants_playback = False
            self._set_transport(TransportState.STOPPED)
        self._bump_token()

    # Transport

    def play(self):
        """
        Plays the current track. Resumes when paused; starts a download and
        plays once it lands when the track is not on disk yet.
        """
        session = self._require_session()
        track = session.current_track
        if track is None:
            return
        if session.transport is TransportState.PAUSED:
            self.output.resume()
            self._set_transport(TransportState.PLAYING)
            return
        if session.transport is TransportState.PLAYING:
            return

        session.wants_playback = True
        if track.is_resolved:
            self._start_playback()
        else:
            self.ensure_current_resolved()

    def pause(self):
        session = self._require_session()
        if session.transport is TransportState.PLAYING:
            session.position = self.output.position()
            self.output.pause()
            self._set_transport(TransportState.PAUSED)
        elif session.transport is TransportState.STOPPED:
            # Nothing is audible yet; drop the pending request to play.
            session.wants_playback = False

    def toggle_pause(self):
        session = self._require_session()
        if session.transport is TransportState.PLAYING:
            self.pause()
        else:
            self.play()

    def stop(self):
        session = self._require_session()
        self._save_position()
        self._leave_current()
        self._bump_token()
        self.output.stop()
        session.wants_playback = False
        session.position = 0.0
        self._set_transport(TransportState.STOPPED)

    def skip_next(self):
        """
        Moves to the next track of the order and plays it. At the end of the
        order playback stops, unless repeat is on, in which case the order
        starts over (reshuffled when shuffle is on).
        """
        session = self._require_session()
        self._leave_current()
        self._bump_token()

        nxt = ShuffleSequencer.advance(session.order, session.cursor, FORWARD)
        if nxt is None:
            if not (session.repeat and len(session.order)):
                log.info("Reached the end of the playlist.")
                self.output.stop()
                session.wants_playback = False
                session.position = 0.0
                self._set_transport(TransportState.STOPPED)
                return
            if session.shuffle:
                session.seed = ShuffleSequencer.next_seed(session.seed)
                self._regenerate_order()
            nxt = 0
        session.cursor = nxt
        self._arrive()

    def skip_prev(self):
        """Moves to the previous track; on the first track this restarts it."""
        session = self._require_session()
        self._leave_current()
        self._bump_token()
        session.cursor = ShuffleSequencer.advance(
            session.order, session.cursor, BACKWARD
        ) or 0
        self._arrive()

    def play_index(self, position: int):
        """Jumps to `position` in the play order and plays it."""
        session = self._require_session()
        if not 0 <= position < len(session.order):
            raise IndexError(f"No track at position {position}.")
        self._leave_current()
        self._bump_token()
        session.cursor = position
        self._arrive()

    def seek(self, position: float):
        session = self._require_session()
        track = session.current_track
        if (
            track is None
            or not track.is_resolved
            or session.transport not in _ACTIVE_TRANSPORT
        ):
            raise NotReady("Nothing is loaded to seek in.")
        position = max(0.0, float(position))
        duration = self.output.duration()
        if duration:
            position = min(position, duration)
        self.output.seek(position)
        session.position = position

    def forward(self, seconds: float):
        session = self._require_session()
        if session.transport not in _ACTIVE_TRANSPORT:
            raise NotReady("Nothing is playing.")
        target = self.output.position() + seconds
        duration = self.output.duration()
        if duration and target >= duration:
            self.skip_next()
        else:
            self.seek(target)

    def rewind(self, seconds: float):
        session = self._require_session()
        if session.transport not in _ACTIVE_TRANSPORT:
            raise NotReady("Nothing is playing.")
        self.seek(max(0.0, self.output.position() - seconds))

    def seek_percentage(self, percentage: float):
        self._require_session()
        duration = self.output.duration()
        if not duration:
            raise NotReady("The track length is not known yet.")
        percentage = min(100.0, max(0.0, float(percentage)))
        self.seek(duration * percentage / 100)

    def set_volume(self, volume: int) -> int:
        self.volume = _clamp_volume(volume)
        self.output.set_volume(self.volume)
        self.events.emit(VolumeChanged(self.volume))
        return self.volume

    def change_volume(self, delta: int) -> int:
        return self.set_volume(self.volume + delta)

    def toggle_shuffle(self) -> bool:
        session = self._require_session()
        session.shuffle = not session.shuffle
        session.seed = ShuffleSequencer.new_seed() if session.shuffle else None
        current_id = session.current_track_id
        self._regenerate_order()
        if current_id is not None:
            session.cursor = session.order.position_of(current_id)
        log.debug(f"Shuffle {'on' if session.shuffle else 'off'}")
        return session.shuffle

    def set_repeat(self, enabled: bool):
        self._require_session().repeat = bool(enabled)

    def dispatch(self, command: Command):
        """Applies a `Command` coming from the shell."""
        kind = command.kind
        if kind is CommandKind.OPEN:
            playlist, tracks = command.argument
            return self.open(playlist, tracks)
        handlers: dict[CommandKind, Callable] = {
            CommandKind.PLAY: self.play,
            CommandKind.PAUSE: self.pause,
            CommandKind.STOP: self.stop,
            CommandKind.SKIP_NEXT: self.skip_next,
            CommandKind.SKIP_PREV: self.skip_prev,
        }
        if kind in handlers:
            return handlers[kind]()
        if kind is CommandKind.SEEK:
            return self.seek(command.argument)
        if kind is CommandKind.SET_VOLUME:
            return self.set_volume(command.argument)
        raise ValueError(f"Unknown command: {kind}")

    # Resolution

    def ensure_current_resolved(self) -> Optional[SlotState]:
        """
        Makes sure the current track is on disk or on its way there.

        Attaches the current navigation token to an existing download of the
        track when there is one, so calling this repeatedly never starts a
        second fetch. A failed track gets a fresh attempt.
        """
        session = self._require_session()
        track = session.current_track
        if track is None:
            return None
        if track.is_resolved:
            return SlotState.RESOLVED

        task = self._tasks.get(track.id)
        if task is not None and not task.handle.done():
            task.waiters.add(session.token)
            if task.state is DownloadState.CANCELLED:
                log.debug(f"Re-attaching to the download of track {track.id}")
                task.state = (
                    DownloadState.IN_PROGRESS if task.progress else DownloadState.PENDING
                )
            return SlotState.FETCHING

        if not track.is_remote:
            reason = f"File not found: {track.local_path}"
            self._failed[track.id] = reason
            session.wants_playback = False
            self.events.emit(TrackFailed(track.id, reason))
            return SlotState.FAILED

        if track.local_path is not None:
            log.info(f"Downloaded file of track {track.id} is gone, fetching it again")
            if self.store is not None and track.playlist_id is not None:
                self.store.forget_path(track.id)
        self._failed.pop(track.id, None)
        serial = next(self._serials)
        try:
            handle = self.fetcher.fetch(
                track.descriptor(),
                session.token,
                partial(self._post_progress, track.id, session.generation, serial),
            )
        except MissingExternalTool as e:
            session.wants_playback = False
            self._report_missing_tools(e.tools)
            raise
        task = DownloadTask(
            track_id=track.id,
            generation=session.generation,
            serial=serial,
            handle=handle,
            waiters={session.token},
        )
        self._tasks[track.id] = task
        handle.add_done_callback(
            partial(self._post_completion, track, session.generation, serial)
        )
        log.debug(f"Fetching track {track.id} ({track.remote_id})")
        return SlotState.FETCHING

    def slot_state(self, track: Track) -> SlotState:
        if track.is_resolved:
            return SlotState.RESOLVED
        task = self._tasks.get(track.id)
        if task is not None and task.state.is_active:
            return SlotState.FETCHING
        if track.id in self._failed:
            return SlotState.FAILED
        return SlotState.UNRESOLVED

    def failure_reason(self, track_id: int) -> Optional[str]:
        return self._failed.get(track_id)

    def download_task(self, track_id: int) -> Optional[DownloadTask]:
        return self._tasks.get(track_id)

    # Queue

    def post(self, message: Any):
        """Thread-unsafe enqueue, for use from tasks running on the engine's loop."""
        self.queue.put_nowait(message)

    def _post_progress(self, track_id: int, generation: int, serial: int, fraction: float):
        self.post(FetchProgress(track_id, generation, serial, fraction))

    def _post_completion(self, track: Track, generation: int, serial: int, result: FetchResult):
        self.post(FetchCompleted(track, generation, serial, result))

    async def run(self):
        """Consumes queued messages until cancelled."""
        while True:
            message = await self.queue.get()
            try:
                self.handle_message(message)
            finally:
                self.queue.task_done()

    def process_pending(self) -> int:
        """Handles every message currently queued. Returns how many there were."""
        handled = 0
        while True:
            try:
                message = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            try:
                self.handle_message(message)
            finally:
                self.queue.task_done()
            handled += 1

    def handle_message(self, message: Any):
        try:
            if isinstance(message, FetchProgress):
                self._on_fetch_progress(message)
            elif isinstance(message, FetchCompleted):
                self._on_fetch_completed(message)
            elif isinstance(message, TrackEnded):
                self._on_track_ended(message)
            else:
                log.warning(f"Ignoring unknown engine message: {message!r}")
        except MissingExternalTool as e:
            log.debug(f"Fetch skipped: {e}")
        except ListuiError as e:
            log.error(f"[red]{e}[/red]")

    def _live_task(self, track_id: int, generation: int, serial: int) -> Optional[DownloadTask]:
        if self.session is None or generation != self.session.generation:
            return None
        task = self._tasks.get(track_id)
        if task is None or task.serial != serial:
            return None
        return task

    def _on_fetch_progress(self, message: FetchProgress):
        task = self._live_task(message.track_id, message.generation, message.serial)
        if task is None:
            return
        task.progress = max(task.progress, min(1.0, message.fraction))
        if task.state is DownloadState.PENDING:
            task.state = DownloadState.IN_PROGRESS
        if task.state.is_active:
            self.events.emit(Progress(task.track_id, task.progress))

    def _on_fetch_completed(self, message: FetchCompleted):
        result = message.result
        if result.status is FetchStatus.RESOLVED:
            # Persist even when the result is stale so the file counts as cached.
            self._persist_path(message.track, result.path)

        task = self._live_task(message.track_id, message.generation, message.serial)
        if task is None:
            log.debug(
                f"Discarding stale fetch result for track {message.track_id} "
                f"(generation {message.generation})"
            )
            return

        session = self.session
        del self._tasks[task.track_id]
        task.path, task.reason = result.path, result.reason

        if result.status is FetchStatus.RESOLVED:
            task.state = DownloadState.COMPLETED
            task.progress = 1.0
            log.debug(f"Track {task.track_id} is ready at {result.path}")
            self._failed.pop(task.track_id, None)
            self.events.emit(TrackReady(task.track_id, result.path))
        elif result.status is FetchStatus.FAILED:
            task.state = DownloadState.FAILED
            self._failed[task.track_id] = result.reason or "download failed"
            log.warning(
                f"[yellow]Could not fetch track {task.track_id}:[/] {task.reason}"
            )
            self.events.emit(TrackFailed(task.track_id, self._failed[task.track_id]))
        else:
            task.state = DownloadState.CANCELLED
            log.debug(f"Download of track {task.track_id} was cancelled")

        is_current = (
            session.current_track_id == task.track_id and session.token in task.waiters
        )
        if not is_current:
            return
        if result.status is FetchStatus.RESOLVED:
            if session.wants_playback:
                self._start_playback()
        else:
            session.wants_playback = False

    def _on_track_ended(self, message: TrackEnded):
        session = self.session
        if session is None or message.token != session.token:
            return
        if session.transport is not TransportState.PLAYING:
            return
        log.debug(f"Track {session.current_track_id} finished")
        self.skip_next()

    # Snapshot

    def upcoming(self, limit: int = 10) -> list[Track]:
        session = self._require_session()
        ids = ShuffleSequencer.upcoming(session.order, session.cursor, limit)
        return [session.tracks[track_id] for track_id in ids]

    def snapshot(self, upcoming: int = 5) -> Optional[PlayerSnapshot]:
        session = self.session
        if session is None:
            return None
        track = session.current_track
        slot = self.slot_state(track) if track else SlotState.UNRESOLVED
        task = self._tasks.get(track.id) if track else None
        if session.transport in _ACTIVE_TRANSPORT:
            elapsed, duration = self.output.position(), self.output.duration()
        else:
            elapsed, duration = session.position, 0.0
        return PlayerSnapshot(
            playlist_title=session.playlist.title,
            track=track,
            cursor=session.cursor,
            track_count=len(session.order),
            transport=session.transport,
            slot=slot,
            download_progress=task.progress if task else 0.0,
            elapsed=elapsed,
            duration=duration,
            volume=self.volume,
            shuffle=session.shuffle,
            repeat=session.repeat,
            upcoming=tuple(self.upcoming(upcoming)),
        )

    # Internals

    def _require_session(self) -> PlaybackSession:
        if self.session is None:
            raise NotReady("No playlist is open.")
        return self.session

    def _bump_token(self):
        token = next(self._tokens)
        if self.session is not None:
            self.session.token = token

    def _regenerate_order(self):
        session = self.session
        session.order = ShuffleSequencer.generate(
            list(session.tracks), session.seed, session.generation
        )

    def _leave_current(self):
        """Detaches the track being left from its download, which keeps running."""
        session = self.session
        track_id = session.current_track_id
        task = self._tasks.get(track_id) if track_id is not None else None
        if task is not None and task.state.is_active:
            log.debug(f"Detaching from the download of track {track_id}")
            task.state = DownloadState.CANCELLED

    def _arrive(self):
        session = self.session
        self.output.stop()
        session.position = 0.0
        session.wants_playback = True
        self._set_transport(TransportState.STOPPED)
        track = session.current_track
        if track is None:
            return
        if track.is_resolved:
            self._start_playback()
        else:
            self.ensure_current_resolved()

    def _start_playback(self):
        session = self.session
        track = session.current_track
        session.wants_playback = False
        log.info(f"Playing [bold]{track.title}[/bold]")
        self.output.load(
            track.local_path,
            start=session.position,
            on_end=partial(self.post, TrackEnded(session.token)),
        )
        self._set_transport(TransportState.PLAYING)

    def _persist_path(self, track: Track, path: str):
        updated = track.with_path(path)
        session = self.session
        if session is not None and track.playlist_id == session.playlist.id:
            if track.id not in session.tracks:
                log.debug(f"Track {track.id} left the playlist; not saving its path")
                return
            session.tracks[track.id] = updated
        if self.store is not None and track.playlist_id is not None:
            self.store.upsert_track(updated)

    def _save_position(self):
        session = self.session
        if self.store is None or session is None or not session.playlist.is_stored:
            return
        track_id = session.current_track_id
        if session.transport in _ACTIVE_TRANSPORT:
            session.position = self.output.position()
        self.store.save_position(session.playlist.id, track_id, session.position)

    def _report_missing_tools(self, tools: Sequence[str]):
        if self._tools_reported:
            return
        self._tools_reported = True
        log.warning(f"Missing tools for remote playback: {', '.join(tools)}")
        self.events.emit(ToolMissing(tuple(tools)))

    def _set_transport(self, state: TransportState, force: bool = False):
        session = self.session
        if session.transport is state and not force:
            return
        session.transport = state
        self.events.emit(TransportChanged(state, session.current_track_id))


def _clamp_volume(volume: int) -> int:
    return max(0, min(100, int(volume)))
