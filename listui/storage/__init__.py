"""
Storage Layer.

This package handles all data persistence: the INI configuration file and the
SQLite database of saved playlists and downloaded tracks.
"""

from .config_manager import ConfigManager
from .track_store import TrackStore

__all__ = ["ConfigManager", "TrackStore"]
