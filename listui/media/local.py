"""
Builds playlists out of audio files already on disk.
"""

import logging
from pathlib import Path
from typing import Union

from listui.media.integrity import FileIntegrityChecker
from listui.models.library import Playlist, SourceKind, Track

log = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset({".mp3", ".flac", ".ogg", ".opus", ".m4a", ".wav"})


def scan_directory(directory: Union[str, Path], recursive: bool = False) -> list[Path]:
    """Returns the audio files in `directory`, sorted by file name."""
    root = Path(directory).expanduser()
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    pattern = "**/*" if recursive else "*"
    files = [
        path
        for path in root.glob(pattern)
        if path.is_file() and path.suffix.lower() in AUDIO_EXTENSIONS
    ]
    return sorted(files, key=lambda path: (path.name.lower(), str(path)))


def track_title(path: Path) -> str:
    return FileIntegrityChecker.read_title(str(path)) or path.stem


def load_directory(
    directory: Union[str, Path], playlist_id: int = 0, recursive: bool = False
) -> tuple[Playlist, list[Track]]:
    """
    Builds a local playlist from a directory. With the default `playlist_id`
    of 0 the playlist is transient and never written to the store.
    """
    root = Path(directory).expanduser().resolve()
    files = scan_directory(root, recursive=recursive)
    log.debug(f"Found {len(files)} audio files in {root}")
    playlist = Playlist(
        id=playlist_id,
        title=root.name or str(root),
        source=SourceKind.LOCAL,
        directory=str(root),
    )
    tracks = [
        Track(
            id=index,
            title=track_title(path),
            playlist_id=playlist_id or None,
            local_path=str(path),
        )
        for index, path in enumerate(files, start=1)
    ]
    return playlist, tracks
