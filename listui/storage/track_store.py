"""
Manages the SQLite database holding saved playlists, their tracks, the paths
of downloaded files and the last listening position of every playlist.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from listui.exceptions import DuplicatePlaylist, PlaylistNotFound, StoreCorrupt
from listui.models.library import Playlist, SourceKind, Track, TrackDescriptor
from listui.utils.path import create_dir

log = logging.getLogger(__name__)

TrackLike = Union[Track, TrackDescriptor]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS playlist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    source TEXT NOT NULL,
    remote_id TEXT UNIQUE,
    directory TEXT,
    last_track_id INTEGER,
    last_position REAL NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS track (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    playlist_id INTEGER NOT NULL REFERENCES playlist(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    title TEXT NOT NULL,
    remote_id TEXT,
    local_path TEXT
);
CREATE INDEX IF NOT EXISTS idx_track_playlist ON track(playlist_id, position);
"""

_PLAYLIST_COLUMNS = "id, title, source, remote_id, directory, last_track_id, last_position"
_TRACK_COLUMNS = "id, title, playlist_id, remote_id, local_path"


def _playlist_from_row(row: sqlite3.Row) -> Playlist:
    return Playlist(
        id=row["id"],
        title=row["title"],
        source=SourceKind(row["source"]),
        remote_id=row["remote_id"],
        directory=row["directory"],
        last_track_id=row["last_track_id"],
        last_position=row["last_position"] or 0.0,
    )


def _track_key(track: Union[TrackLike, sqlite3.Row]) -> str:
    """Identity of a track across playlist updates."""
    if isinstance(track, sqlite3.Row):
        remote_id, local_path = track["remote_id"], track["local_path"]
    else:
        remote_id, local_path = track.remote_id, getattr(track, "local_path", None)
    return f"remote:{remote_id}" if remote_id else f"file:{local_path}"


def _track_from_row(row: sqlite3.Row) -> Track:
    return Track(
        id=row["id"],
        title=row["title"],
        playlist_id=row["playlist_id"],
        remote_id=row["remote_id"],
        local_path=row["local_path"],
    )


class TrackStore:
    """
    A small synchronous SQLite store. Every call opens its own connection, so
    a store object can be shared freely; calls are short enough to run on the
    event loop.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        try:
            create_dir(self.db_path.parent)
        except OSError as e:
            raise StoreCorrupt(f"Cannot create the playlist database directory: {e}") from e
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yields a connection that commits on success and is always closed."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise StoreCorrupt(f"Could not open playlist database '{self.db_path}': {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as e:
            log.error(f"Playlist database error: {e}")
            raise StoreCorrupt(f"Playlist database '{self.db_path}' is unusable: {e}") from e
        finally:
            conn.close()

    # Playlists

    def list_playlists(self) -> list[Playlist]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_PLAYLIST_COLUMNS} FROM playlist ORDER BY title COLLATE NOCASE"
            ).fetchall()
        return [_playlist_from_row(row) for row in rows]

    def track_counts(self) -> dict[int, tuple[int, int]]:
        """Maps playlist ids to (track count, downloaded track count)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT playlist_id, COUNT(*), COUNT(local_path) FROM track GROUP BY playlist_id"
            ).fetchall()
        return {row[0]: (row[1], row[2]) for row in rows}

    def get_playlist(self, playlist_id: int) -> Playlist:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PLAYLIST_COLUMNS} FROM playlist WHERE id = ?", (playlist_id,)
            ).fetchone()
        if row is None:
            raise PlaylistNotFound(f"No saved playlist with id {playlist_id}.")
        return _playlist_from_row(row)

    def find_playlist(self, key: str) -> Playlist:
        """
        Looks a playlist up by numeric id, remote id or title (in that order,
        titles compared case-insensitively).
        """
        key = key.strip()
        if key.isdigit():
            try:
                return self.get_playlist(int(key))
            except PlaylistNotFound:
                pass
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PLAYLIST_COLUMNS} FROM playlist WHERE remote_id = ? "
                "OR title = ? COLLATE NOCASE ORDER BY remote_id = ? DESC, id LIMIT 1",
                (key, key, key),
            ).fetchone()
        if row is None:
            raise PlaylistNotFound(f"No saved playlist matches '{key}'.")
        return _playlist_from_row(row)

    def save_playlist(
        self,
        title: str,
        source: SourceKind,
        remote_id: Optional[str] = None,
        directory: Optional[str] = None,
    ) -> Playlist:
        """
        Inserts a new playlist row.

        Raises:
            DuplicatePlaylist: If a playlist with the same remote id is saved.
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO playlist (title, source, remote_id, directory) "
                    "VALUES (?, ?, ?, ?)",
                    (title, SourceKind(source).value, remote_id, directory),
                )
                playlist_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicatePlaylist(
                f"Playlist '{remote_id}' is already in your library."
            ) from e
        log.debug(f"Saved playlist {playlist_id}: {title}")
        return Playlist(
            id=playlist_id,
            title=title,
            source=SourceKind(source),
            remote_id=remote_id,
            directory=directory,
        )

    def rename_playlist(self, playlist_id: int, title: str):
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE playlist SET title = ? WHERE id = ?", (title, playlist_id)
            )
        if cursor.rowcount == 0:
            raise PlaylistNotFound(f"No saved playlist with id {playlist_id}.")

    def delete_playlist(self, playlist_id: int):
        """Deletes a playlist and, through the foreign key, all of its tracks."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM playlist WHERE id = ?", (playlist_id,))
        if cursor.rowcount == 0:
            raise PlaylistNotFound(f"No saved playlist with id {playlist_id}.")
        log.debug(f"Deleted playlist {playlist_id}")

    def save_position(self, playlist_id: int, track_id: Optional[int], position: float):
        with self._connect() as conn:
            conn.execute(
                "UPDATE playlist SET last_track_id = ?, last_position = ? WHERE id = ?",
                (track_id, max(0.0, float(position)), playlist_id),
            )

    # Tracks

    def get_tracks(self, playlist_id: int) -> list[Track]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_TRACK_COLUMNS} FROM track WHERE playlist_id = ? "
                "ORDER BY position, id",
                (playlist_id,),
            ).fetchall()
        return [_track_from_row(row) for row in rows]

    def save_tracks(self, playlist_id: int, tracks: Sequence[TrackLike]) -> list[Track]:
        """Appends `tracks` to a playlist and returns them with their new ids."""
        with self._connect() as conn:
            start = conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM track WHERE playlist_id = ?",
                (playlist_id,),
            ).fetchone()[0]
            self._insert_tracks(conn, playlist_id, tracks, start)
        return self.get_tracks(playlist_id)

    def replace_tracks(self, playlist_id: int, tracks: Sequence[TrackLike]) -> list[Track]:
        """
        Makes the playlist contain exactly `tracks`, in order. Rows are matched
        by remote id (by file for local tracks) so that tracks still present
        keep their id and any downloaded file.
        """
        with self._connect() as conn:
            if conn.execute("SELECT 1 FROM playlist WHERE id = ?", (playlist_id,)).fetchone() is None:
                raise PlaylistNotFound(f"No saved playlist with id {playlist_id}.")
            existing = {
                _track_key(row): row["id"]
                for row in conn.execute(
                    "SELECT id, remote_id, local_path FROM track WHERE playlist_id = ?",
                    (playlist_id,),
                )
            }
            kept: set[int] = set()
            for position, track in enumerate(tracks):
                track_id = existing.pop(_track_key(track), None)
                if track_id is None:
                    self._insert_tracks(conn, playlist_id, [track], position)
                    continue
                kept.add(track_id)
                conn.execute(
                    "UPDATE track SET title = ?, position = ? WHERE id = ?",
                    (track.title, position, track_id),
                )
            stale = list(existing.values())
            conn.executemany("DELETE FROM track WHERE id = ?", [(i,) for i in stale])
        log.debug(
            f"Replaced tracks of playlist {playlist_id}: kept {len(kept)}, "
            f"removed {len(stale)}"
        )
        return self.get_tracks(playlist_id)

    def upsert_track(self, track: Track) -> Track:
        """
        Updates an existing track row (title and downloaded path) or inserts it
        when it has no row yet.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE track SET title = ?, local_path = ? WHERE id = ?",
                (track.title, track.local_path, track.id),
            )
            if cursor.rowcount:
                return track
            if track.playlist_id is None:
                raise ValueError(f"Track {track.id} has no playlist to be saved in.")
            position = conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM track WHERE playlist_id = ?",
                (track.playlist_id,),
            ).fetchone()[0]
            try:
                cursor = conn.execute(
                    "INSERT INTO track (playlist_id, position, title, remote_id, local_path) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (track.playlist_id, position, track.title, track.remote_id, track.local_path),
                )
            except sqlite3.IntegrityError as e:
                raise PlaylistNotFound(
                    f"No saved playlist with id {track.playlist_id}."
                ) from e
        return Track(
            id=cursor.lastrowid,
            title=track.title,
            playlist_id=track.playlist_id,
            remote_id=track.remote_id,
            local_path=track.local_path,
        )

    def forget_path(self, track_id: int):
        """Clears the downloaded path of a track whose file has disappeared."""
        with self._connect() as conn:
            conn.execute("UPDATE track SET local_path = NULL WHERE id = ?", (track_id,))

    def _insert_tracks(
        self, conn: sqlite3.Connection, playlist_id: int, tracks: Sequence[TrackLike], start: int
    ):
        records = [
            (
                playlist_id,
                start + offset,
                track.title,
                track.remote_id,
                getattr(track, "local_path", None),
            )
            for offset, track in enumerate(tracks)
        ]
        try:
            conn.executemany(
                "INSERT INTO track (playlist_id, position, title, remote_id, local_path) "
                "VALUES (?, ?, ?, ?, ?)",
                records,
            )
        except sqlite3.IntegrityError as e:
            raise PlaylistNotFound(f"No saved playlist with id {playlist_id}.") from e
