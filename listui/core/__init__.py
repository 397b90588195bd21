"""
Core Application Logic Layer.

This package holds the playback engine, which coordinates the play order,
the transport and background downloads, plus the shuffle sequencer it uses.
"""

from .engine import PlaybackEngine
from .events import EventFeed
from .shuffle import ShuffleSequencer

__all__ = ["EventFeed", "PlaybackEngine", "ShuffleSequencer"]
