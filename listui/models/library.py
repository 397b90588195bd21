"""
Data classes describing playlists and tracks as stored in the library.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional


class SourceKind(str, Enum):
    """Where a playlist's tracks come from."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class TrackDescriptor:
    """A remote track that has been listed but not necessarily downloaded."""

    title: str
    remote_id: str


@dataclass(frozen=True)
class Playlist:
    id: int
    title: str
    source: SourceKind
    remote_id: Optional[str] = None
    directory: Optional[str] = None
    last_track_id: Optional[int] = None
    last_position: float = 0.0

    @property
    def is_remote(self) -> bool:
        return self.source is SourceKind.REMOTE

    @property
    def is_stored(self) -> bool:
        """Directory playlists opened ad hoc are not backed by a store row."""
        return self.id > 0


@dataclass(frozen=True)
class Track:
    """
    A playable entry of a playlist.

    Remote tracks carry a `remote_id` and gain a `local_path` once the
    fetcher has downloaded them. Local tracks always have a `local_path`.
    """

    id: int
    title: str
    playlist_id: Optional[int] = None
    remote_id: Optional[str] = None
    local_path: Optional[str] = field(default=None, compare=False)

    @property
    def is_remote(self) -> bool:
        return self.remote_id is not None

    @property
    def is_resolved(self) -> bool:
        """True when the track has a playable file on disk."""
        return self.local_path is not None and Path(self.local_path).is_file()

    def with_path(self, path: str) -> "Track":
        if not self.is_remote and self.local_path is not None:
            raise ValueError(f"Local track {self.id} already has a fixed path.")
        return replace(self, local_path=path)

    def descriptor(self) -> TrackDescriptor:
        if self.remote_id is None:
            raise ValueError(f"Track {self.id} is not a remote track.")
        return TrackDescriptor(title=self.title, remote_id=self.remote_id)


@dataclass(frozen=True)
class RemotePlaylist:
    """The result of listing a playlist through the metadata API."""

    title: str
    remote_id: str
    tracks: list[TrackDescriptor] = field(default_factory=list)
