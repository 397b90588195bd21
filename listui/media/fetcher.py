"""
Downloads remote tracks by driving yt-dlp as a subprocess.

Every request returns a `FetchHandle`, a small cancellable future that always
resolves to a `FetchResult`. Requests for a track that is already being
downloaded share the running job instead of starting a second process that
would write to the same file.
"""

import asyncio
import logging
import os
import re
import shutil
from collections import deque
from pathlib import Path
from typing import Callable, Optional

from listui.exceptions import DownloadFailed, MissingExternalTool
from listui.media.integrity import FileIntegrityChecker
from listui.models.config import PlayerConfig
from listui.models.library import TrackDescriptor
from listui.models.playback import FetchResult, FetchStatus
from listui.utils.path import create_dir, track_filename

log = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={}"
PROGRESS_PATTERN = re.compile(r"^\[download\]\s+(?P<percent>\d+(?:\.\d+)?)%")

ProgressCallback = Callable[[float], None]


def parse_progress(line: str) -> Optional[float]:
    """Extracts the completed fraction from a `yt-dlp --newline` progress line."""
    match = PROGRESS_PATTERN.match(line.strip())
    if not match:
        return None
    return min(1.0, float(match.group("percent")) / 100)


class FetchHandle:
    """
    One caller's view of a download.

    Resolves exactly once. Cancelling a handle withdraws its interest; the
    process is only terminated once no other handle is waiting on it, and the
    handle still resolves when the process is gone.
    """

    def __init__(
        self,
        descriptor: TrackDescriptor,
        token: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.descriptor = descriptor
        self.token = token
        self.on_progress = on_progress
        self.cancelled = False
        self._job: Optional["_FetchJob"] = None
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> FetchResult:
        return self._future.result()

    def add_done_callback(self, callback: Callable[[FetchResult], None]):
        self._future.add_done_callback(lambda fut: callback(fut.result()))

    def cancel(self, terminate: bool = True) -> bool:
        """Returns False when the handle had already resolved."""
        if self.done():
            return False
        self.cancelled = True
        if self._job is not None:
            self._job.release(self, terminate)
        return True

    def __await__(self):
        return asyncio.shield(self._future).__await__()

    def _report(self, fraction: float):
        if self.on_progress is not None and not self.done():
            self.on_progress(fraction)

    def _resolve(self, result: FetchResult):
        if not self._future.done():
            self._future.set_result(result)


class _FetchJob:
    """A single yt-dlp run shared by every handle asking for the same file."""

    def __init__(self, descriptor: TrackDescriptor, target: Path, priority: int):
        self.descriptor = descriptor
        self.target = target
        self.priority = priority
        self.progress = 0.0
        self.handles: list[FetchHandle] = []
        self.interested: set[int] = set()
        self.terminating = False
        self.task: Optional[asyncio.Task] = None

    def attach(self, handle: FetchHandle):
        handle._job = self
        self.handles.append(handle)
        self.interested.add(id(handle))
        if self.progress:
            handle._report(self.progress)

    def release(self, handle: FetchHandle, terminate: bool):
        self.interested.discard(id(handle))
        if terminate and not self.interested and not self.terminating:
            self.terminating = True
            if self.task is not None:
                self.task.cancel()

    def report(self, fraction: float):
        if fraction <= self.progress:
            return
        self.progress = fraction
        for handle in self.handles:
            handle._report(fraction)

    def finish(self, result: FetchResult):
        for handle in self.handles:
            handle._resolve(result)


class Fetcher:
    """
    Turns track descriptors into local files.

    At most `max_downloads` processes run at once. When more are requested,
    the most recently requested track gets the next free slot, since that is
    the one the listener is waiting for.
    """

    def __init__(
        self,
        download_dir: Path,
        max_downloads: int = 3,
        downloader: str = "yt-dlp",
        decoder: str = "ffmpeg",
        terminate_grace: float = 3.0,
    ):
        self.download_dir = Path(download_dir)
        self.max_downloads = max_downloads
        self.downloader = downloader
        self.decoder = decoder
        self.terminate_grace = terminate_grace
        self._jobs: dict[str, _FetchJob] = {}
        self._running = 0
        self._waiting: dict[_FetchJob, asyncio.Future] = {}
        self._requests = 0
        self._missing_tools: Optional[list[str]] = None

    @classmethod
    def from_config(cls, config: PlayerConfig) -> "Fetcher":
        return cls(
            config.download_path,
            max_downloads=config.max_downloads,
            downloader=config.downloader,
            decoder=config.decoder,
        )

    # Tools

    def missing_tools(self) -> list[str]:
        """Executables needed for downloads that are not on PATH. Probed once."""
        if self._missing_tools is None:
            self._missing_tools = [
                tool for tool in (self.downloader, self.decoder) if not shutil.which(tool)
            ]
            if self._missing_tools:
                log.debug(f"Missing executables: {', '.join(self._missing_tools)}")
        return self._missing_tools

    def check_tools(self):
        missing = self.missing_tools()
        if missing:
            raise MissingExternalTool(missing)

    # Requests

    def target_path(self, descriptor: TrackDescriptor) -> Path:
        return self.download_dir / track_filename(descriptor.title, descriptor.remote_id)

    def build_command(self, descriptor: TrackDescriptor, target: Path) -> list[str]:
        # yt-dlp expands %(...)s in the output template; literal percent signs
        # in titles have to be doubled.
        template = str(target.with_suffix("")).replace("%", "%%") + ".%(ext)s"
        return [
            self.downloader,
            "--newline",
            "--no-playlist",
            "-f",
            "bestaudio",
            "-x",
            "--audio-format",
            "mp3",
            "--embed-thumbnail",
            "-o",
            template,
            WATCH_URL.format(descriptor.remote_id),
        ]

    def fetch(
        self,
        descriptor: TrackDescriptor,
        token: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FetchHandle:
        """
        Requests `descriptor`. Already downloaded files resolve immediately;
        otherwise the helper executables must be installed.

        Raises:
            MissingExternalTool: If yt-dlp or ffmpeg cannot be found.
        """
        handle = FetchHandle(descriptor, token, on_progress)
        target = self.target_path(descriptor)

        if target.is_file() and FileIntegrityChecker.check_mp3(str(target)):
            log.debug(f"Cache hit for {descriptor.remote_id}: {target.name}")
            handle._resolve(FetchResult.resolved(str(target)))
            return handle

        self._requests += 1
        job = self._jobs.get(descriptor.remote_id)
        if job is not None and not job.terminating:
            log.debug(f"Attaching to running download of {descriptor.remote_id}")
            job.priority = self._requests
            job.attach(handle)
            return handle

        self.check_tools()
        previous = job
        job = _FetchJob(descriptor, target, self._requests)
        job.attach(handle)
        self._jobs[descriptor.remote_id] = job
        job.task = asyncio.create_task(self._run(job, previous))
        return handle

    async def close(self):
        """Terminates every running download and waits for them to wind down."""
        jobs = list(self._jobs.values())
        for job in jobs:
            job.terminating = True
            job.task.cancel()
        await asyncio.gather(*(job.task for job in jobs), return_exceptions=True)

    @property
    def active_downloads(self) -> int:
        return len(self._jobs)

    # Job execution

    async def _run(self, job: _FetchJob, previous: Optional[_FetchJob]):
        result = FetchResult.cancelled()
        try:
            if previous is not None and previous.task is not None:
                # A terminated run for the same file may still be exiting.
                await asyncio.gather(previous.task, return_exceptions=True)
            if job.target.is_file() and FileIntegrityChecker.check_mp3(str(job.target)):
                result = FetchResult.resolved(str(job.target))
            else:
                await self._acquire(job)
                try:
                    result = await self._download(job)
                except DownloadFailed as e:
                    log.debug(f"Download of {job.descriptor.remote_id} failed: {e.reason}")
                    result = FetchResult.failed(e.reason)
                finally:
                    self._release()
        except asyncio.CancelledError:
            if job.target.is_file() and FileIntegrityChecker.check_mp3(str(job.target)):
                result = FetchResult.resolved(str(job.target))
            log.debug(f"Download of {job.descriptor.remote_id} cancelled")
        except Exception as e:
            log.exception(f"Unexpected error while fetching {job.descriptor.remote_id}")
            result = FetchResult.failed(str(e) or type(e).__name__)
        finally:
            if self._jobs.get(job.descriptor.remote_id) is job:
                del self._jobs[job.descriptor.remote_id]
            if result.status is FetchStatus.RESOLVED:
                job.report(1.0)
            job.finish(result)

    async def _acquire(self, job: _FetchJob):
        if self._running < self.max_downloads and not self._waiting:
            self._running += 1
            return
        slot = asyncio.get_running_loop().create_future()
        self._waiting[job] = slot
        try:
            await slot
        except asyncio.CancelledError:
            self._waiting.pop(job, None)
            if slot.done() and not slot.cancelled():
                # The slot was handed over just before the cancellation landed.
                self._release()
            raise

    def _release(self):
        if self._waiting:
            job = max(self._waiting, key=lambda waiting: waiting.priority)
            self._waiting.pop(job).set_result(None)
        else:
            self._running -= 1

    async def _download(self, job: _FetchJob) -> FetchResult:
        try:
            create_dir(self.download_dir)
        except OSError as e:
            raise DownloadFailed(f"Cannot use download directory {self.download_dir}: {e}") from e
        command = self.build_command(job.descriptor, job.target)
        log.debug(f"Running: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise DownloadFailed(f"Could not start {self.downloader}: {e}") from e

        tail: deque[str] = deque(maxlen=5)
        try:
            async for raw in process.stdout:
                line = raw.decode(errors="replace").rstrip()
                fraction = parse_progress(line)
                if fraction is not None:
                    # Leave the last percent for post-processing.
                    job.report(min(fraction, 0.99))
                elif line:
                    tail.append(line)
            returncode = await process.wait()
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        except (ValueError, asyncio.LimitOverrunError) as e:
            await self._terminate(process)
            raise DownloadFailed(f"Unreadable output from {self.downloader}: {e}") from e

        if returncode != 0:
            errors = [line for line in tail if line.startswith("ERROR")]
            reason = errors[-1] if errors else f"{self.downloader} exited with status {returncode}"
            raise DownloadFailed(reason)
        if not job.target.is_file():
            raise DownloadFailed(f"{self.downloader} produced no file")
        if not FileIntegrityChecker.check_mp3(str(job.target)):
            try:
                os.remove(job.target)
            except OSError as e:
                log.warning(f"Could not remove broken download {job.target}: {e}")
            raise DownloadFailed("integrity check failed")
        log.debug(f"Downloaded {job.descriptor.remote_id} to {job.target.name}")
        return FetchResult.resolved(str(job.target))

    async def _terminate(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
            except asyncio.TimeoutError:
                log.debug(f"{self.downloader} ignored SIGTERM, killing it")
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass
