"""
Async client listing YouTube playlists through the YouTube Data API or, when no
API key is configured, through a list of Invidious instances with circuit
breaker protection per instance.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import aiohttp

from listui.exceptions import MetadataUnavailable, PlaylistNotFound
from listui.models.config import PlayerConfig
from listui.models.library import RemotePlaylist, TrackDescriptor
from listui.utils.circuit_breaker import CircuitBreaker
from listui.utils.path import parse_playlist_url

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

HIDDEN_TITLES = frozenset(
    {"[Deleted video]", "[Private video]", "Deleted video", "Private video"}
)


class _NotFound(Exception):
    """An endpoint answered that the playlist does not exist."""


class MetadataResolver:
    """
    Resolves a playlist URL or id into its title and track descriptors.

    Features:
    - YouTube Data API v3 when an API key is set
    - Invidious fallback across several instances
    - One circuit breaker per Invidious instance
    """

    YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"

    def __init__(
        self,
        instances: List[str],
        api_key: str = "",
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            instances: Base URLs of Invidious instances, tried in order.
            api_key: YouTube Data API key. When set, Invidious is not used.
            timeout: Total timeout for a single HTTP request, in seconds.
            session: An existing session to use instead of creating one.
        """
        self.instances = [instance.rstrip("/") for instance in instances]
        self.api_key = api_key
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._breakers: Dict[str, CircuitBreaker] = {
            instance: CircuitBreaker(instance) for instance in self.instances
        }

    @classmethod
    def from_config(cls, config: PlayerConfig) -> "MetadataResolver":
        return cls(
            config.invidious_instances,
            api_key=config.youtube_api_key,
            timeout=config.request_timeout,
        )

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept-Encoding": "gzip, deflate"},
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=10),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MetadataResolver":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def breaker(self, instance: str) -> CircuitBreaker:
        return self._breakers[instance.rstrip("/")]

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._initialize_session()
        async with session.get(url, params=params) as r:
            if r.status == 404:
                raise _NotFound(url)
            r.raise_for_status()
            data = await r.json(content_type=None)
        if not isinstance(data, dict):
            raise ValueError("Unexpected response format.")
        if "error" in data:
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ValueError(message or "API returned an error.")
        return data

    # Public API

    async def resolve_remote_playlist(
        self, url_or_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> RemotePlaylist:
        """
        Lists a whole playlist.

        Raises:
            PlaylistNotFound: If the URL is not a playlist URL or the playlist
                does not exist.
            MetadataUnavailable: If no backend could be reached.
        """
        title, remote_id = "", ""
        tracks: List[TrackDescriptor] = []
        async for page in self.iter_remote_playlist(url_or_id, on_progress):
            title, remote_id = page.title, page.remote_id
            tracks.extend(page.tracks)
        log.info(f"Fetched {len(tracks)} tracks of [bold]{title}[/bold]")
        return RemotePlaylist(title=title, remote_id=remote_id, tracks=tracks)

    async def iter_remote_playlist(
        self, url_or_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> AsyncGenerator[RemotePlaylist, None]:
        """
        Yields the playlist one page at a time. Every page carries the playlist
        title; `on_progress` receives the number of tracks fetched so far.
        """
        playlist_id = parse_playlist_url(url_or_id)
        if playlist_id is None:
            raise PlaylistNotFound(f"Not a YouTube playlist URL or id: {url_or_id}")

        if self.api_key:
            pages = self._youtube_pages(playlist_id)
        else:
            pages = self._invidious_pages(playlist_id)

        fetched = 0
        async for page in pages:
            fetched += len(page.tracks)
            if on_progress is not None:
                on_progress(fetched)
            yield page

    # YouTube Data API

    async def _youtube_pages(self, playlist_id: str) -> AsyncGenerator[RemotePlaylist, None]:
        log.info(f"Fetching playlist {playlist_id} from YouTube.")
        try:
            info = await self._get_json(
                f"{self.YOUTUBE_API_URL}/playlists",
                {"part": "snippet", "key": self.api_key, "id": playlist_id},
            )
        except _NotFound as e:
            raise PlaylistNotFound(f"Playlist {playlist_id} does not exist.") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise MetadataUnavailable(
                f"Could not reach the YouTube API: {e}", {"youtube": str(e)}
            ) from e

        items = info.get("items") or []
        if len(items) != 1:
            raise PlaylistNotFound(f"Playlist {playlist_id} does not exist.")
        title = items[0].get("snippet", {}).get("title", playlist_id)
        remote_id = items[0].get("id", playlist_id)

        page_token: Optional[str] = None
        while True:
            params = {
                "maxResults": 50,
                "part": "snippet",
                "key": self.api_key,
                "playlistId": remote_id,
            }
            if page_token:
                params["pageToken"] = page_token
            try:
                content = await self._get_json(
                    f"{self.YOUTUBE_API_URL}/playlistItems", params
                )
            except (_NotFound, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise MetadataUnavailable(
                    f"Listing playlist {remote_id} failed: {e}", {"youtube": str(e)}
                ) from e

            tracks = []
            for item in content.get("items", []):
                snippet = item.get("snippet", {})
                video_id = (snippet.get("resourceId") or {}).get("videoId")
                if not video_id or snippet.get("title") in HIDDEN_TITLES:
                    continue
                tracks.append(TrackDescriptor(title=snippet.get("title", video_id), remote_id=video_id))
            yield RemotePlaylist(title=title, remote_id=remote_id, tracks=tracks)

            page_token = content.get("nextPageToken")
            if not page_token:
                break

    # Invidious

    async def _invidious_pages(self, playlist_id: str) -> AsyncGenerator[RemotePlaylist, None]:
        reasons: Dict[str, str] = {}
        not_found = 0

        for instance in self.instances:
            breaker = self._breakers[instance]
            if breaker.is_open:
                reasons[instance] = "skipped after repeated failures"
                continue

            log.info(f"Fetching playlist {playlist_id} from Invidious instance: {instance}")
            yielded = False
            try:
                async for page in self._invidious_playlist(instance, playlist_id):
                    yielded = True
                    yield page
            except _NotFound:
                # The instance works, it just does not know the playlist.
                await breaker.record_success()
                not_found += 1
                reasons[instance] = "playlist not found"
                log.debug(f"{instance} does not know playlist {playlist_id}")
                continue
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError) as e:
                await breaker.record_failure()
                reasons[instance] = str(e) or type(e).__name__
                if yielded:
                    # Part of the listing is already out; another instance
                    # could page differently, so give up instead.
                    raise MetadataUnavailable(
                        f"Listing playlist {playlist_id} from {instance} was interrupted.",
                        reasons,
                    ) from e
                log.warning(
                    f"[yellow]Could not fetch playlist {playlist_id} from {instance}:[/] "
                    f"{reasons[instance]}"
                )
                continue

            await breaker.record_success()
            return

        if not_found and not_found == len(reasons):
            raise PlaylistNotFound(f"Playlist {playlist_id} does not exist.", reasons)
        raise MetadataUnavailable(
            f"Could not fetch playlist {playlist_id} from any Invidious instance.",
            reasons,
        )

    async def _invidious_playlist(
        self, instance: str, playlist_id: str
    ) -> AsyncGenerator[RemotePlaylist, None]:
        page = 1
        last_index = -1
        while True:
            content = await self._get_json(
                f"{instance}/api/v1/playlists/{playlist_id}", {"page": page}
            )
            videos = content.get("videos") or []
            if not videos:
                if page == 1:
                    yield RemotePlaylist(
                        title=content["title"], remote_id=content["playlistId"]
                    )
                break

            # Invidious can return the same videos on consecutive pages.
            tracks = [
                TrackDescriptor(title=video["title"], remote_id=video["videoId"])
                for video in videos
                if video["index"] > last_index and video["title"] not in HIDDEN_TITLES
            ]
            yield RemotePlaylist(
                title=content["title"], remote_id=content["playlistId"], tracks=tracks
            )
            last_index = videos[-1]["index"]
            page += 1
