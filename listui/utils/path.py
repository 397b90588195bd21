"""
Utilities for handling file paths, cache file names, and URL parsing.
"""

import os
import re
from pathlib import Path
from typing import Optional

from pathvalidate import sanitize_filename

PLAYLIST_URL_PATTERN = re.compile(
    r"^https?://(?:www\.|m\.|music\.)?(?:youtube\.com|youtu\.be)/.+\?(?:.+&)*list=(?P<id>(?:PL|OL|UU|FL|RD)[\w-]+?)(?:&|$)"
)
PLAYLIST_ID_PATTERN = re.compile(r"^(?:PL|OL|UU|FL|RD)[\w-]{10,}$")


def parse_playlist_url(url: str) -> Optional[str]:
    """
    Extracts the playlist id from a YouTube playlist URL.
    A bare playlist id is returned unchanged.
    """
    url = url.strip()
    if PLAYLIST_ID_PATTERN.match(url):
        return url
    match = PLAYLIST_URL_PATTERN.search(url)
    if match:
        return match.group("id")
    return None


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def track_filename(title: str, remote_id: str, ext: str = "mp3") -> str:
    """
    Builds the cache file name for a remote track. The remote id is part of
    the name so that two tracks with the same title never share a file.
    """
    stem = sanitize_filename(title, platform="auto").strip() or "track"
    # Leave room for the id suffix within common 255 byte name limits.
    stem = stem[:180]
    safe_id = sanitize_filename(remote_id, platform="auto")
    return f"{stem} [{safe_id}].{ext}"


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "listui"
