"""
Messages crossing the engine boundary.

Commands flow from the shell into the engine; events flow from the engine out
to the shell. Fetch and audio messages flow from background tasks into the
engine's queue and are only ever consumed by the engine itself.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .library import Track
from .playback import FetchResult, TransportState


class CommandKind(str, Enum):
    OPEN = "open"
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"
    SKIP_NEXT = "skip_next"
    SKIP_PREV = "skip_prev"
    SEEK = "seek"
    SET_VOLUME = "set_volume"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    argument: Any = None


# Events published to the shell


@dataclass(frozen=True)
class Progress:
    track_id: int
    fraction: float


@dataclass(frozen=True)
class TrackReady:
    track_id: int
    path: str


@dataclass(frozen=True)
class TrackFailed:
    track_id: int
    reason: str


@dataclass(frozen=True)
class TransportChanged:
    state: TransportState
    track_id: Optional[int]


@dataclass(frozen=True)
class VolumeChanged:
    volume: int


@dataclass(frozen=True)
class ToolMissing:
    """Remote playback is unavailable because helper executables are absent."""

    tools: tuple[str, ...]


# Messages posted to the engine queue by background tasks


@dataclass(frozen=True)
class FetchProgress:
    track_id: int
    generation: int
    serial: int
    fraction: float


@dataclass(frozen=True)
class FetchCompleted:
    track: Track
    generation: int
    serial: int
    result: FetchResult

    @property
    def track_id(self) -> int:
        return self.track.id


@dataclass(frozen=True)
class TrackEnded:
    """Posted by the audio output when the loaded file played to its end."""

    token: int
