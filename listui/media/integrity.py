"""
Validates audio files and reads the little metadata the player needs from them.
"""

import logging
from typing import Optional

import mutagen
from mutagen import MutagenError
from mutagen.mp3 import MP3, HeaderNotFoundError

log = logging.getLogger(__name__)


class FileIntegrityChecker:
    """A collection of static methods for validating audio files."""

    @staticmethod
    def check_mp3(filepath: str) -> bool:
        """
        Performs a basic integrity check on an MP3 file produced by the fetcher.

        Args:
            filepath: Path to the MP3 file.

        Returns:
            True if mutagen can parse the file and it has a positive duration.
        """
        try:
            audio = MP3(filepath)
            if audio.info and audio.info.length > 0:
                return True
            log.warning(
                f"'{filepath}' has no playable MP3 stream."
            )
            return False
        except HeaderNotFoundError:
            log.warning(
                f"'{filepath}' is not an MP3 file (no frame header)."
            )
            return False
        except (MutagenError, OSError) as e:
            log.debug(f"MP3 check failed for '{filepath}': {e}")
            return False

    @staticmethod
    def duration(filepath: str) -> float:
        """Length of the file in seconds, or 0.0 when it cannot be determined."""
        try:
            audio = mutagen.File(filepath)
        except (MutagenError, OSError):
            return 0.0
        if audio is None or not audio.info:
            return 0.0
        return float(audio.info.length)

    @staticmethod
    def read_title(filepath: str) -> Optional[str]:
        """Returns the title tag of a file, if it has one."""
        try:
            audio = mutagen.File(filepath, easy=True)
        except (MutagenError, OSError) as e:
            log.debug(f"Could not read tags from '{filepath}': {e}")
            return None
        if audio is None or not audio.tags:
            return None
        titles = audio.tags.get("title")
        if titles:
            title = str(titles[0]).strip()
            return title or None
        return None
