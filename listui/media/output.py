"""
Audio outputs the engine can drive.

`MpvOutput` controls an mpv process over its JSON IPC socket. `NullOutput`
plays nothing and only keeps time; it backs dry runs and the test-suite.
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from listui.exceptions import MissingExternalTool
from listui.media.integrity import FileIntegrityChecker

log = logging.getLogger(__name__)

EndCallback = Callable[[], None]


class AudioOutput(Protocol):
    def load(self, path: str, start: float = 0.0, on_end: Optional[EndCallback] = None) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_volume(self, volume: int) -> None: ...

    def position(self) -> float: ...

    def duration(self) -> float: ...

    async def close(self) -> None: ...


class NullOutput:
    """An output that pretends to play files by keeping a clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.path: Optional[str] = None
        self.volume = 100
        self.paused = False
        self.loads: list[str] = []
        self._offset = 0.0
        self._started_at: Optional[float] = None
        self._duration = 0.0
        self._on_end: Optional[EndCallback] = None

    def load(self, path: str, start: float = 0.0, on_end: Optional[EndCallback] = None):
        self.path = path
        self.loads.append(path)
        self.paused = False
        self._offset = start
        self._started_at = self._clock()
        self._duration = FileIntegrityChecker.duration(path)
        self._on_end = on_end

    def pause(self):
        if self.path and not self.paused:
            self._offset = self.position()
            self.paused = True

    def resume(self):
        if self.path and self.paused:
            self._started_at = self._clock()
            self.paused = False

    def stop(self):
        self.path = None
        self.paused = False
        self._offset = 0.0
        self._started_at = None
        self._duration = 0.0
        self._on_end = None

    def seek(self, seconds: float):
        self._offset = seconds
        self._started_at = self._clock()

    def set_volume(self, volume: int):
        self.volume = volume

    def position(self) -> float:
        if self.path is None:
            return 0.0
        if self.paused or self._started_at is None:
            return self._offset
        elapsed = self._offset + self._clock() - self._started_at
        return min(elapsed, self._duration) if self._duration else elapsed

    def duration(self) -> float:
        return self._duration

    def finish(self):
        """Simulates the loaded file playing to its end."""
        on_end = self._on_end
        self.stop()
        if on_end is not None:
            on_end()

    async def close(self):
        self.stop()


class MpvOutput:
    """
    Plays files through an idle mpv process controlled over JSON IPC.

    Call `start()` once from the event loop before use and `close()` on exit.
    """

    def __init__(self, binary: str = "mpv", socket_path: Optional[str] = None):
        self.binary = binary
        self.socket_path = socket_path or os.path.join(
            tempfile.gettempdir(), f"listui-mpv-{os.getpid()}.sock"
        )
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._listener: Optional[asyncio.Task] = None
        self._time_pos = 0.0
        self._duration = 0.0
        self._volume = 100
        self._on_end: Optional[EndCallback] = None
        self._loads = 0
        self._started = 0
        self._pending_start = 0.0

    async def start(self, timeout: float = 3.0):
        if self._process is not None:
            return
        if shutil.which(self.binary) is None:
            raise MissingExternalTool([self.binary])

        Path(self.socket_path).unlink(missing_ok=True)
        self._process = await asyncio.create_subprocess_exec(
            self.binary,
            "--idle=yes",
            "--no-video",
            "--audio-display=no",
            "--terminal=no",
            "--keep-open=no",
            f"--volume={self._volume}",
            f"--input-ipc-server={self.socket_path}",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

        deadline = time.monotonic() + timeout
        while True:
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    self.socket_path
                )
                break
            except OSError as e:
                if time.monotonic() > deadline:
                    await self.close()
                    raise OSError(f"Failed to connect to mpv at {self.socket_path}: {e}")
                await asyncio.sleep(0.05)

        self._listener = asyncio.create_task(self._listen())
        for observer_id, name in enumerate(("time-pos", "duration"), start=1):
            self._command("observe_property", observer_id, name)
        log.debug(f"mpv started with IPC socket {self.socket_path}")

    async def close(self):
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
            self._listener = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        if self._process is not None and self._process.returncode is None:
            self._process.terminate()
            await self._process.wait()
        self._process = None
        Path(self.socket_path).unlink(missing_ok=True)

    def _command(self, *args: Any):
        if self._writer is None:
            log.debug(f"mpv not connected, dropping command {args!r}")
            return
        self._writer.write((json.dumps({"command": list(args)}) + "\n").encode("utf-8"))

    async def _listen(self):
        while True:
            line = await self._reader.readline()
            if not line:
                log.warning("[yellow]mpv closed its IPC connection.[/yellow]")
                return
            try:
                message = json.loads(line.decode("utf-8", errors="replace"))
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict):
                self._handle(message)

    def _handle(self, message: dict):
        event = message.get("event")
        if event == "property-change":
            value = message.get("data")
            if message.get("name") == "time-pos":
                self._time_pos = float(value) if value is not None else 0.0
            elif message.get("name") == "duration":
                self._duration = float(value) if value is not None else 0.0
        elif event == "start-file":
            self._started += 1
        elif event == "file-loaded":
            if self._pending_start:
                self._command("seek", self._pending_start, "absolute")
            self._pending_start = 0.0
        elif event == "end-file":
            if message.get("reason") == "error":
                log.error(f"[red]mpv could not play the file:[/red] {message.get('file_error')}")
            # An eof for a file that was already replaced must not end the new one.
            if message.get("reason") == "eof" and self._started == self._loads:
                on_end, self._on_end = self._on_end, None
                if on_end is not None:
                    on_end()

    def load(self, path: str, start: float = 0.0, on_end: Optional[EndCallback] = None):
        self._loads += 1
        self._on_end = on_end
        self._time_pos = start
        self._duration = 0.0
        self._pending_start = start
        self._command("loadfile", path, "replace")
        self._command("set_property", "pause", False)

    def pause(self):
        self._command("set_property", "pause", True)

    def resume(self):
        self._command("set_property", "pause", False)

    def stop(self):
        self._on_end = None
        self._time_pos = 0.0
        self._duration = 0.0
        self._command("stop")

    def seek(self, seconds: float):
        self._time_pos = seconds
        self._command("seek", float(seconds), "absolute")

    def set_volume(self, volume: int):
        self._volume = volume
        self._command("set_property", "volume", volume)

    def position(self) -> float:
        return self._time_pos

    def duration(self) -> float:
        return self._duration
