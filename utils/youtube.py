"""
yt-dlp backed media resolution and download.

Every yt-dlp call blocks, so each one runs in the loop's default executor.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yt_dlp
from yt_dlp.utils import DownloadError

from config import Config
from player.errors import (
    FetchError,
    FetchKind,
    ResolutionError,
    ResolutionKind,
    classify_media_error,
)
from player.models import MediaDescriptor, QueueEntry
from utils.logger import set_logger
from utils import spotify

logger = set_logger(logging.getLogger('Cadence.YouTube'))

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_UNAVAILABLE = ("private", "needs_auth", "subscriber_only", "premium_only")

PLAYLIST_LIMIT = 50


def base_options() -> Dict[str, Any]:
    """yt-dlp options shared by every call, with cookies / PO token applied."""
    options = Config.YTDL_FORMAT_OPTIONS.copy()
    if Config.YTDL_COOKIES_PATH:
        options['cookiefile'] = Config.YTDL_COOKIES_PATH
    if Config.YTDL_PO_TOKEN:
        options['extractor_args'] = {
            'youtube': {
                'po_token': [Config.YTDL_PO_TOKEN]
            }
        }
    return options


def descriptor_from_info(info: Dict[str, Any]) -> Optional[MediaDescriptor]:
    """Build a MediaDescriptor from a yt-dlp info dict (full or flat)."""
    video_id = info.get('id')
    if not video_id:
        return None
    url = info.get('webpage_url') or info.get('url') or ''
    if not url.startswith(('http://', 'https://')):
        url = f"https://www.youtube.com/watch?v={video_id}"
    return MediaDescriptor(
        id=str(video_id),
        title=info.get('title') or 'Unknown',
        url=url,
        duration=int(info.get('duration') or 0),
        approx_size_bytes=info.get('filesize') or info.get('filesize_approx'),
        age_restricted=(info.get('age_limit') or 0) > 0,
        available=info.get('availability') not in _UNAVAILABLE,
        uploader=info.get('uploader') or info.get('channel') or 'Unknown',
    )


def _resolution_error(exc: Exception) -> ResolutionError:
    kind = classify_media_error(str(exc))
    if kind == "age_restricted":
        return ResolutionError(ResolutionKind.AGE_RESTRICTED, str(exc))
    if kind == "unavailable":
        return ResolutionError(ResolutionKind.UNAVAILABLE, str(exc))
    return ResolutionError(ResolutionKind.INVALID_INPUT, str(exc))


class YouTubeResolver:
    """Turns URLs and search text into MediaDescriptors."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    @staticmethod
    def is_url(value: str) -> bool:
        return bool(_URL_PATTERN.match(value.strip()))

    @staticmethod
    def is_external_url(value: str) -> bool:
        return spotify.is_spotify_url(value)

    @staticmethod
    def is_playlist_url(value: str) -> bool:
        return "list=" in value and ("youtube.com" in value or "youtu.be" in value)

    async def _extract(self, target: str, **overrides) -> Optional[Dict[str, Any]]:
        options = base_options()
        options.update(overrides)

        def run():
            with yt_dlp.YoutubeDL(options) as ydl:
                return ydl.extract_info(target, download=False)

        return await self.loop.run_in_executor(None, run)

    async def resolve(self, url: str) -> List[MediaDescriptor]:
        """Resolve a direct URL. Playlists yield every entry (flat, capped)."""
        if self.is_playlist_url(url):
            overrides = {'noplaylist': False, 'extract_flat': 'in_playlist', 'playlistend': PLAYLIST_LIMIT}
        else:
            overrides = {}

        try:
            info = await self._extract(url, **overrides)
        except DownloadError as exc:
            logger.warning(f"Could not resolve {url}: {exc}")
            raise _resolution_error(exc) from exc

        if not info:
            raise ResolutionError(ResolutionKind.NO_RESULTS, url)

        raw = [e for e in info['entries'] if e] if 'entries' in info else [info]
        descriptors = [d for d in (descriptor_from_info(e) for e in raw) if d]
        if not descriptors:
            raise ResolutionError(ResolutionKind.NO_RESULTS, url)
        return descriptors

    async def search(self, text: str, count: int = 1) -> List[MediaDescriptor]:
        """Search YouTube. Entries yt-dlp refuses outright are dropped."""
        query = f"ytsearch{max(1, count)}:{text}"
        try:
            info = await self._extract(query, ignoreerrors=True)
        except DownloadError as exc:
            logger.warning(f"Search failed for '{text}': {exc}")
            raise _resolution_error(exc) from exc

        if not info or not info.get('entries'):
            return []
        return [d for d in (descriptor_from_info(e) for e in info['entries'] if e) if d]

    async def related(self, video_id: str, count: int = 10) -> List[MediaDescriptor]:
        """Related videos for `video_id`, when yt-dlp reports any."""
        try:
            info = await self._extract(f"https://www.youtube.com/watch?v={video_id}")
        except DownloadError as exc:
            logger.warning(f"Related lookup failed for {video_id}: {exc}")
            return []
        related = (info or {}).get('related_videos') or []
        return [d for d in (descriptor_from_info(v) for v in related[:count] if v) if d]

    async def expand_external(self, url: str, limit: Optional[int] = None) -> Tuple[str, List[str]]:
        """Expand a Spotify link into (name, [search text, ...])."""
        try:
            return await self.loop.run_in_executor(None, lambda: spotify.fetch_queries(url, limit))
        except spotify.SpotifyError as exc:
            raise ResolutionError(ResolutionKind.EXTERNAL_SERVICE, str(exc)) from exc


class YouTubeFetcher:
    """Downloads audio for a queue entry into the cache directory as mp3."""

    def __init__(self, max_file_size_bytes: Optional[int] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.max_file_size_bytes = max_file_size_bytes
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _options(self, destination: Path) -> Dict[str, Any]:
        options = base_options()
        options.update({
            'outtmpl': str(destination.with_suffix('')) + '.%(ext)s',
            'postprocessors': [{
                'key': 'FFmpegExtractAudio',
                'preferredcodec': 'mp3',
                'preferredquality': '192',
            }],
        })
        if self.max_file_size_bytes:
            options['max_filesize'] = self.max_file_size_bytes
        return options

    async def fetch(self, entry: QueueEntry, destination: Path) -> Path:
        """Download `entry` to `destination` (an .mp3 path) and return it."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        options = self._options(destination)

        def run():
            with yt_dlp.YoutubeDL(options) as ydl:
                ydl.download([entry.source_url])

        logger.info(f"Downloading '{entry.title}' ({entry.id})")
        try:
            await self.loop.run_in_executor(None, run)
        except DownloadError as exc:
            kind = classify_media_error(str(exc))
            if kind == "age_restricted":
                raise FetchError(FetchKind.AGE_RESTRICTED, str(exc)) from exc
            if kind == "unavailable":
                raise FetchError(FetchKind.UNAVAILABLE, str(exc)) from exc
            raise FetchError(FetchKind.NETWORK, str(exc)) from exc

        if not destination.is_file():
            # yt-dlp skips files over max_filesize without raising
            raise FetchError(FetchKind.TOO_LARGE if self.max_file_size_bytes else FetchKind.NETWORK,
                             f"No file produced for {entry.id}")
        return destination
