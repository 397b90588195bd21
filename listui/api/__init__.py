"""
Metadata API Layer.

This package lists remote playlists through the YouTube Data API or Invidious.
"""

from .client import MetadataResolver

__all__ = ["MetadataResolver"]
