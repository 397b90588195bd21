"""
State carried by the playback engine: the session, the play order and the
download tasks attached to tracks.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .library import Playlist, Track


class TransportState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class SlotState(str, Enum):
    """Lifecycle of a single track slot as seen by the engine."""

    UNRESOLVED = "unresolved"
    FETCHING = "fetching"
    RESOLVED = "resolved"
    FAILED = "failed"


class DownloadState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (DownloadState.PENDING, DownloadState.IN_PROGRESS)


class FetchStatus(str, Enum):
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FetchResult:
    """Terminal outcome of a fetch, always delivered exactly once per handle."""

    status: FetchStatus
    path: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def resolved(cls, path: str) -> "FetchResult":
        return cls(FetchStatus.RESOLVED, path=path)

    @classmethod
    def failed(cls, reason: str) -> "FetchResult":
        return cls(FetchStatus.FAILED, reason=reason)

    @classmethod
    def cancelled(cls) -> "FetchResult":
        return cls(FetchStatus.CANCELLED, reason="cancelled")


@dataclass(frozen=True)
class PlaybackOrder:
    """
    The sequence in which the tracks of a session are played.

    `indices` are positions into the track list the order was generated from;
    `track_ids` holds the matching track identifiers in play order. `seed` is
    None for the identity (playlist) order.
    """

    indices: tuple[int, ...]
    track_ids: tuple[int, ...]
    seed: Optional[int] = None
    generation: int = 0

    @property
    def shuffled(self) -> bool:
        return self.seed is not None

    def __len__(self) -> int:
        return len(self.track_ids)

    def position_of(self, track_id: int) -> Optional[int]:
        try:
            return self.track_ids.index(track_id)
        except ValueError:
            return None


@dataclass
class DownloadTask:
    """
    A fetch attached to one track. `waiters` holds the navigation tokens that
    asked for this track; a completion is only allowed to start playback if the
    session's current token is one of them.
    """

    track_id: int
    generation: int
    serial: int = 0
    handle: Any = None
    state: DownloadState = DownloadState.PENDING
    progress: float = 0.0
    waiters: set[int] = field(default_factory=set)
    path: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class SessionHandle:
    """Returned by `PlaybackEngine.open`; identifies one playback session."""

    generation: int
    playlist: Playlist
    track_count: int


@dataclass
class PlaybackSession:
    playlist: Playlist
    tracks: dict[int, Track]
    order: PlaybackOrder
    generation: int
    cursor: int = 0
    token: int = 0
    transport: TransportState = TransportState.STOPPED
    position: float = 0.0
    wants_playback: bool = False
    shuffle: bool = False
    repeat: bool = False
    seed: Optional[int] = None

    @property
    def current_track_id(self) -> Optional[int]:
        if not self.order.track_ids:
            return None
        return self.order.track_ids[self.cursor]

    @property
    def current_track(self) -> Optional[Track]:
        track_id = self.current_track_id
        return self.tracks.get(track_id) if track_id is not None else None


@dataclass(frozen=True)
class PlayerSnapshot:
    """Read-only view of the engine state used for rendering."""

    playlist_title: str
    track: Optional[Track]
    cursor: int
    track_count: int
    transport: TransportState
    slot: SlotState
    download_progress: float
    elapsed: float
    duration: float
    volume: int
    shuffle: bool
    repeat: bool
    upcoming: tuple[Track, ...] = ()
