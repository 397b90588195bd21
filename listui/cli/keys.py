"""
Non-blocking keyboard input for the interactive player.

The terminal is switched to cbreak mode for the lifetime of a `KeyReader`, and
key presses are delivered through an asyncio queue fed by the event loop's
reader callback.
"""

import asyncio
import os
import sys
import termios
import tty
from typing import Optional

ESCAPE_SEQUENCES = {
    "\x1b[A": "UP",
    "\x1b[B": "DOWN",
    "\x1b[C": "RIGHT",
    "\x1b[D": "LEFT",
    "\x1bOA": "UP",
    "\x1bOB": "DOWN",
    "\x1bOC": "RIGHT",
    "\x1bOD": "LEFT",
}


def split_keys(data: str) -> list[str]:
    """Splits raw terminal input into key names; arrows become UP/DOWN/LEFT/RIGHT."""
    keys = []
    i = 0
    while i < len(data):
        chunk = data[i : i + 3]
        if chunk in ESCAPE_SEQUENCES:
            keys.append(ESCAPE_SEQUENCES[chunk])
            i += 3
            continue
        ch = data[i]
        if ch in ("\r", "\n"):
            keys.append("ENTER")
        elif ch == "\x1b":
            keys.append("ESCAPE")
        else:
            keys.append(ch)
        i += 1
    return keys


class KeyReader:
    """Async context manager yielding key names read from stdin."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self.queue: asyncio.Queue = asyncio.Queue()
        self._fd: Optional[int] = None
        self._saved = None

    async def __aenter__(self) -> "KeyReader":
        self._fd = self.stream.fileno()
        self._saved = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        asyncio.get_running_loop().add_reader(self._fd, self._on_readable)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        asyncio.get_running_loop().remove_reader(self._fd)
        termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)

    def _on_readable(self):
        try:
            data = os.read(self._fd, 64).decode(errors="ignore")
        except OSError:
            return
        for key in split_keys(data):
            self.queue.put_nowait(key)

    async def get(self) -> str:
        return await self.queue.get()
