"""
Media Layer.

This package is responsible for turning tracks into playable files and
playing them: the yt-dlp fetcher, integrity validation, local directory
scanning and the audio outputs.
"""

from .fetcher import FetchHandle, Fetcher
from .integrity import FileIntegrityChecker
from .output import AudioOutput, MpvOutput, NullOutput

__all__ = [
    "AudioOutput",
    "FetchHandle",
    "Fetcher",
    "FileIntegrityChecker",
    "MpvOutput",
    "NullOutput",
]
