"""
Data Models Layer.

This package contains the dataclasses shared by the engine, the fetcher and the
store, plus the Pydantic configuration model.
"""

from .config import PlayerConfig
from .library import Playlist, RemotePlaylist, SourceKind, Track, TrackDescriptor
from .playback import (
    DownloadState,
    DownloadTask,
    FetchResult,
    FetchStatus,
    PlaybackOrder,
    PlaybackSession,
    PlayerSnapshot,
    SessionHandle,
    SlotState,
    TransportState,
)

__all__ = [
    "DownloadState",
    "DownloadTask",
    "FetchResult",
    "FetchStatus",
    "PlaybackOrder",
    "PlaybackSession",
    "PlayerConfig",
    "PlayerSnapshot",
    "Playlist",
    "RemotePlaylist",
    "SessionHandle",
    "SlotState",
    "SourceKind",
    "Track",
    "TrackDescriptor",
    "TransportState",
]
