from typing import Callable, Optional

import pytest

from listui.core.engine import PlaybackEngine
from listui.exceptions import MissingExternalTool
from listui.media.output import NullOutput
from listui.models.library import Playlist, SourceKind, Track, TrackDescriptor
from listui.models.playback import FetchResult
from listui.storage.track_store import TrackStore


class FakeHandle:
    """A fetch handle resolved by hand from the test."""

    def __init__(self, descriptor: TrackDescriptor, token: int, on_progress: Optional[Callable]):
        self.descriptor = descriptor
        self.token = token
        self.on_progress = on_progress
        self.cancelled = False
        self.terminated = False
        self._result: Optional[FetchResult] = None
        self._callbacks: list[Callable] = []

    def done(self) -> bool:
        return self._result is not None

    def result(self) -> FetchResult:
        return self._result

    def add_done_callback(self, callback):
        if self.done():
            callback(self._result)
        else:
            self._callbacks.append(callback)

    def cancel(self, terminate: bool = True) -> bool:
        if self.done():
            return False
        self.cancelled = True
        self.terminated = terminate
        self.finish(FetchResult.cancelled())
        return True

    def progress(self, fraction: float):
        if self.on_progress is not None:
            self.on_progress(fraction)

    def finish(self, result: FetchResult):
        if self.done():
            return
        self._result = result
        for callback in self._callbacks:
            callback(result)


class FakeFetcher:
    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.missing: list[str] = []

    def missing_tools(self) -> list[str]:
        return list(self.missing)

    def fetch(self, descriptor, token=0, on_progress=None) -> FakeHandle:
        if self.missing:
            raise MissingExternalTool(self.missing)
        handle = FakeHandle(descriptor, token, on_progress)
        self.handles.append(handle)
        return handle

    def handles_for(self, remote_id: str) -> list[FakeHandle]:
        return [h for h in self.handles if h.descriptor.remote_id == remote_id]

    def last(self, remote_id: str) -> FakeHandle:
        return self.handles_for(remote_id)[-1]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def remote_playlist(count: int, playlist_id: int = 1) -> tuple[Playlist, list[Track]]:
    playlist = Playlist(
        id=playlist_id, title="Mix", source=SourceKind.REMOTE, remote_id="PLmix0000000"
    )
    tracks = [
        Track(id=i, title=f"Song {i}", playlist_id=playlist_id, remote_id=f"vid{i}")
        for i in range(1, count + 1)
    ]
    return playlist, tracks


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def output(clock) -> NullOutput:
    return NullOutput(clock=clock)


@pytest.fixture
def engine(fetcher, output) -> PlaybackEngine:
    return PlaybackEngine(fetcher, output)


@pytest.fixture
def store(tmp_path) -> TrackStore:
    return TrackStore(tmp_path / "library.sqlite")


@pytest.fixture
def audio_file(tmp_path) -> Callable[[str], str]:
    """Creates a placeholder file standing in for a downloaded track."""

    def _make(name: str) -> str:
        path = tmp_path / "audio" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x00" * 16)
        return str(path)

    return _make
