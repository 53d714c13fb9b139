import pytest

from player.errors import ResolutionKind, classify_media_error
from utils import spotify
from utils.youtube import YouTubeResolver, _resolution_error, descriptor_from_info


def test_descriptor_from_full_info():
    info = {
        "id": "abc",
        "title": "Some Song",
        "webpage_url": "https://www.youtube.com/watch?v=abc",
        "duration": 215.0,
        "filesize_approx": 3_000_000,
        "age_limit": 0,
        "uploader": "Band",
    }
    descriptor = descriptor_from_info(info)

    assert descriptor.id == "abc"
    assert descriptor.duration == 215
    assert descriptor.approx_size_bytes == 3_000_000
    assert not descriptor.age_restricted
    assert descriptor.available


def test_descriptor_from_flat_search_entry():
    descriptor = descriptor_from_info({"id": "xyz", "url": "xyz", "age_limit": 18, "availability": "private"})

    assert descriptor.url == "https://www.youtube.com/watch?v=xyz"
    assert descriptor.title == "Unknown"
    assert descriptor.age_restricted
    assert not descriptor.available


def test_descriptor_needs_an_id():
    assert descriptor_from_info({"title": "nothing"}) is None


@pytest.mark.parametrize("message, kind", [
    ("ERROR: Sign in to confirm your age", "age_restricted"),
    ("This video is age-restricted", "age_restricted"),
    ("Video unavailable", "unavailable"),
    ("This is a private video", "unavailable"),
    ("HTTP Error 503", None),
])
def test_classify_media_error(message, kind):
    assert classify_media_error(message) == kind


def test_resolution_error_kinds():
    assert _resolution_error(Exception("Video unavailable")).kind is ResolutionKind.UNAVAILABLE
    assert _resolution_error(Exception("Unsupported URL")).kind is ResolutionKind.INVALID_INPUT


def test_url_detection():
    assert YouTubeResolver.is_url("https://youtu.be/abc")
    assert not YouTubeResolver.is_url("never gonna give you up")
    assert YouTubeResolver.is_playlist_url("https://www.youtube.com/playlist?list=PL123")
    assert not YouTubeResolver.is_playlist_url("https://www.youtube.com/watch?v=abc")
    assert YouTubeResolver.is_external_url("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC")


@pytest.mark.parametrize("value, expected", [
    ("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC?si=x", ("track", "4uLU6hMCjMI75M1A2tKUQC")),
    ("https://open.spotify.com/intl-de/album/1ATL5GLyefJaxhQzSPVrLX", ("album", "1ATL5GLyefJaxhQzSPVrLX")),
    ("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M", ("playlist", "37i9dQZF1DXcBWIGoYBM5M")),
    ("https://open.spotify.com/artist/0OdUWJ0sBjDrqHygGUXeCF", None),
    ("", None),
])
def test_parse_spotify_url(value, expected):
    assert spotify.parse_spotify_url(value) == expected


def test_track_query():
    track = {"name": "Song", "artists": [{"name": "A"}, {"name": "B"}]}
    assert spotify._track_query(track) == "A, B - Song"
    assert spotify._track_query({"name": "Solo"}) == "Solo"
    assert spotify._track_query({"name": "Local", "is_local": True}) is None


class PagingClient:
    def __init__(self, pages):
        self.pages = pages

    def next(self, page):
        return self.pages[page["next"]]


def test_collect_walks_pages_up_to_limit():
    pages = {
        "p2": {"items": [{"track": {"name": "Three"}}, {"track": {"name": "Four"}}], "next": None},
    }
    first = {"items": [{"track": {"name": "One"}}, {"track": None}, {"track": {"name": "Two"}}], "next": "p2"}

    assert spotify._collect(PagingClient(pages), first, 10, key="track") == ["One", "Two", "Three", "Four"]
    assert spotify._collect(PagingClient(pages), first, 3, key="track") == ["One", "Two", "Three"]


def test_fetch_queries_without_credentials(monkeypatch):
    monkeypatch.setattr(spotify, "_spotify_client", None)
    monkeypatch.setattr(spotify.Config, "SPOTIFY_CLIENT_ID", None)

    with pytest.raises(spotify.SpotifyError):
        spotify.fetch_queries("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC")
