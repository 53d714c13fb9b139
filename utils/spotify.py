"""
Spotify helpers: turn track, album and playlist links into search queries.
"""
from __future__ import annotations

import re
from typing import List, Tuple, Optional, Any

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials
from spotipy.exceptions import SpotifyException
from requests.exceptions import Timeout as RequestsTimeout

from config import Config
from utils.logger import set_logger
import logging

logger = set_logger(logging.getLogger("Cadence.Spotify"))

_spotify_client: Optional[spotipy.Spotify] = None

_SPOTIFY_PATTERN = re.compile(
    r"(?:spotify:(?P<uri_kind>track|album|playlist):(?P<uri_id>[A-Za-z0-9]+))"
    r"|(?:open\.spotify\.com/(?:intl-[a-z]+/)?(?P<url_kind>track|album|playlist)/(?P<url_id>[A-Za-z0-9]+))"
)


class SpotifyError(Exception):
    """Raised when Spotify operations fail."""


def _parse_timeout(value: Any) -> Any:
    """
    Parse Spotipy requests_timeout setting.
    Accepts a float/int seconds or a "connect,read" string (seconds).
    """
    if value is None:
        return 5
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        return 5
    if "," in s:
        parts = [p.strip() for p in s.split(",") if p.strip()]
        if len(parts) == 2:
            try:
                return (float(parts[0]), float(parts[1]))
            except ValueError:
                return 5
    try:
        return float(s)
    except ValueError:
        return 5


def _parse_status_forcelist(value: Any) -> List[int]:
    default = [429, 500, 502, 503, 504]
    if value is None:
        return default
    parts = value if isinstance(value, (list, tuple)) else str(value).split(",")
    out: List[int] = []
    for part in parts:
        try:
            out.append(int(str(part).strip()))
        except ValueError:
            continue
    return out or default


def parse_spotify_url(value: str) -> Optional[Tuple[str, str]]:
    """Return (kind, id) for a Spotify track/album/playlist URL or URI."""
    if not value:
        return None
    match = _SPOTIFY_PATTERN.search(value)
    if not match:
        return None
    if match.group("uri_kind"):
        return match.group("uri_kind"), match.group("uri_id")
    return match.group("url_kind"), match.group("url_id")


def is_spotify_url(value: str) -> bool:
    return parse_spotify_url(value) is not None


def _get_client() -> Optional[spotipy.Spotify]:
    global _spotify_client
    if _spotify_client is not None:
        return _spotify_client
    if not Config.SPOTIFY_CLIENT_ID or not Config.SPOTIFY_CLIENT_SECRET:
        return None
    creds = SpotifyClientCredentials(
        client_id=Config.SPOTIFY_CLIENT_ID,
        client_secret=Config.SPOTIFY_CLIENT_SECRET,
    )

    _spotify_client = spotipy.Spotify(
        client_credentials_manager=creds,
        requests_timeout=_parse_timeout(Config.SPOTIFY_REQUEST_TIMEOUT),
        retries=Config.SPOTIFY_RETRIES,
        status_retries=Config.SPOTIFY_STATUS_RETRIES,
        backoff_factor=Config.SPOTIFY_BACKOFF_FACTOR,
        status_forcelist=_parse_status_forcelist(Config.SPOTIFY_STATUS_FORCELIST),
    )
    return _spotify_client


def _track_query(track: dict) -> Optional[str]:
    """'<artists> - <title>' search text for a Spotify track object."""
    if not track or track.get("is_local"):
        return None
    title = track.get("name")
    if not title:
        return None
    artists = [a.get("name") for a in track.get("artists", []) if a.get("name")]
    return f"{', '.join(artists)} - {title}" if artists else title


def _collect(client: spotipy.Spotify, page: dict, limit: int, key: Optional[str]) -> List[str]:
    """Walk a paged Spotify listing, collecting search queries."""
    queries: List[str] = []
    while page:
        for item in page.get("items") or []:
            track = (item or {}).get(key) if key else item
            query = _track_query(track or {})
            if query:
                queries.append(query)
            if len(queries) >= limit:
                return queries
        page = client.next(page) if page.get("next") else None
    return queries


def fetch_queries(value: str, limit: Optional[int] = None) -> Tuple[str, List[str]]:
    """
    Expand a Spotify link into (collection name, [search query, ...]).
    Blocking; run it in an executor.
    """
    client = _get_client()
    if not client:
        raise SpotifyError("Spotify credentials are not configured.")

    parsed = parse_spotify_url(value)
    if not parsed:
        raise SpotifyError("Invalid Spotify URL or URI.")
    kind, spotify_id = parsed
    limit = limit or Config.SPOTIFY_MAX_TRACKS

    try:
        if kind == "track":
            track = client.track(spotify_id)
            query = _track_query(track)
            if not query:
                raise SpotifyError("Spotify track has no playable metadata.")
            return track.get("name") or "Spotify Track", [query]
        if kind == "album":
            album = client.album(spotify_id)
            queries = _collect(client, album.get("tracks") or {}, limit, key=None)
            return album.get("name") or "Spotify Album", queries
        playlist = client.playlist(spotify_id)
        queries = _collect(client, playlist.get("tracks") or {}, limit, key="track")
        return playlist.get("name") or "Spotify Playlist", queries
    except SpotifyException as exc:
        status = getattr(exc, "http_status", None)
        msg = getattr(exc, "msg", None) or str(exc)
        logger.error(f"Spotify {kind} fetch failed: {status} {msg}")
        raise SpotifyError(f"Failed to fetch Spotify {kind}.") from exc
    except RequestsTimeout as exc:
        logger.warning(f"Spotify {kind} fetch timed out: {exc}")
        raise SpotifyError("Spotify request timed out.") from exc
