import asyncio
import os
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

# Keep test runs from writing a log file into the working tree
os.environ["LOG_FILE"] = ""

import pytest

from config import CacheSettings, PlaybackConfig, ReconnectSettings
from database import Database
from player.errors import FetchError, ResolutionError, ResolutionKind, TransportError
from player.models import EventKind, MediaDescriptor, SessionEvent
from player.session import PlaybackSession
from player.transport import Transport
from utils.cache import CacheManager
from utils.persistence import QueuePersistence


def track(track_id: str, title: Optional[str] = None, duration: int = 180, **kwargs) -> MediaDescriptor:
    return MediaDescriptor(
        id=track_id,
        title=title or f"Song {track_id}",
        url=f"https://www.youtube.com/watch?v={track_id}",
        duration=duration,
        **kwargs,
    )


async def settle(rounds: int = 20):
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not reached in time")
        await asyncio.sleep(0.001)


async def until_async(predicate, timeout: float = 2.0):
    """Like `until` for predicates that need to await (database reads)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not reached in time")
        await asyncio.sleep(0.005)


class FakeTransport(Transport):
    """In-memory transport. `finish()` plays the current resource to its end."""

    def __init__(self, *, reconnect_failures: int = 0, connect_error: bool = False):
        super().__init__()
        self.connected = False
        self.paused = False
        self.playing = None
        self.played: List[object] = []
        self.volume: Optional[float] = None
        self.connects = 0
        self.disconnects = 0
        self.reconnect_calls = 0
        self.reconnect_failures = reconnect_failures
        self.connect_error = connect_error
        self.play_failures = 0
        self.starts: List[float] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def is_paused(self) -> bool:
        return self.paused

    async def connect(self):
        self.connects += 1
        if self.connect_error:
            raise TransportError(detail="cannot join")
        self.connected = True

    async def reconnect(self):
        self.reconnect_calls += 1
        if self.reconnect_failures > 0:
            self.reconnect_failures -= 1
            raise TransportError(detail="still down")
        self.connected = True

    async def disconnect(self):
        self.connected = False
        self.playing = None
        self.disconnects += 1

    def play(self, resource, *, start: float = 0):
        if not self.connected:
            raise TransportError(detail="not connected")
        if self.play_failures > 0:
            self.play_failures -= 1
            self.playing = None
            raise TransportError(detail="player refused the source")
        self.starts.append(start)
        self.playing = resource
        self.paused = False
        self.played.append(resource)

    def stop(self, *, silent: bool = False):
        if self.playing is None:
            return
        self.playing = None
        self.paused = False
        if not silent:
            # Real players report completion asynchronously
            asyncio.get_running_loop().call_soon(self._emit_idle, None)

    def pause(self) -> bool:
        if self.playing is None or self.paused:
            return False
        self.paused = True
        return True

    def resume(self) -> bool:
        if not self.paused:
            return False
        self.paused = False
        return True

    def set_volume(self, volume: float):
        self.volume = volume

    def finish(self, error: Optional[Exception] = None):
        self.playing = None
        self._emit_idle(error)

    def drop(self):
        """Simulate the voice connection dying under us."""
        self.connected = False
        self.playing = None
        self._emit_disconnected()


class FakeResolver:
    def __init__(self):
        self.catalog: Dict[str, List[MediaDescriptor]] = {}
        self.external: Dict[str, Tuple[str, List[str]]] = {}
        self.related_results: Dict[str, List[MediaDescriptor]] = {}
        self.search_errors: List[ResolutionError] = []
        self.searches: List[Tuple[str, int]] = []

    def add(self, descriptor: MediaDescriptor, query: Optional[str] = None) -> MediaDescriptor:
        self.catalog[descriptor.url] = [descriptor]
        self.catalog[query or descriptor.title] = [descriptor]
        return descriptor

    @staticmethod
    def is_url(value: str) -> bool:
        return value.startswith("http")

    @staticmethod
    def is_external_url(value: str) -> bool:
        return "open.spotify.com" in value

    async def expand_external(self, url: str, limit=None):
        await asyncio.sleep(0)
        return self.external[url]

    async def resolve(self, url: str) -> List[MediaDescriptor]:
        await asyncio.sleep(0)
        if url not in self.catalog:
            raise ResolutionError(ResolutionKind.NO_RESULTS, url)
        return list(self.catalog[url])

    async def search(self, text: str, count: int = 1) -> List[MediaDescriptor]:
        self.searches.append((text, count))
        await asyncio.sleep(0)
        if self.search_errors:
            raise self.search_errors.pop(0)
        return list(self.catalog.get(text, []))[:count]

    async def related(self, video_id: str, count: int = 10) -> List[MediaDescriptor]:
        await asyncio.sleep(0)
        return list(self.related_results.get(video_id, []))[:count]


class FakeFetcher:
    """Writes a small file for each fetch. Failures and a gate can be scripted."""

    def __init__(self):
        self.calls: List[str] = []
        self.failures: Dict[str, FetchError] = {}
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, entry, destination):
        self.calls.append(entry.id)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if entry.id in self.failures:
            raise self.failures[entry.id]
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\0" * 1024)
        return destination


class RecordingSink:
    def __init__(self):
        self.events: List[SessionEvent] = []

    def __call__(self, event: SessionEvent):
        self.events.append(event)

    def of(self, kind: EventKind) -> List[SessionEvent]:
        return [e for e in self.events if e.kind is kind]

    def kinds(self) -> List[EventKind]:
        return [e.kind for e in self.events]


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def database(tmp_path):
    db = Database(str(tmp_path / "cadence.db"))
    await db.initialize()
    return db


@pytest.fixture
def persistence(database):
    return QueuePersistence(database)


@pytest.fixture
def config(tmp_path):
    return PlaybackConfig(
        cache=CacheSettings(directory=tmp_path / "cache"),
        reconnect=ReconnectSettings(attempts=3, delay_seconds=0),
        disconnect_on_empty_queue=False,
        preemptive_download_count=0,
        statistics_enabled=False,
        user_volume_enabled=False,
        now_playing_update_seconds=0,
    )


@pytest.fixture
async def make_session(config, resolver, fetcher, sink):
    created: List[PlaybackSession] = []

    def factory(cfg: Optional[PlaybackConfig] = None, *, transport: Optional[FakeTransport] = None,
                guild_id: int = 1, **kwargs) -> PlaybackSession:
        cfg = cfg or config
        session = PlaybackSession(
            guild_id,
            cfg,
            transport=transport or FakeTransport(),
            resolver=resolver,
            fetcher=fetcher,
            cache=CacheManager(cfg.cache),
            sink=sink,
            **kwargs,
        )
        created.append(session)
        return session

    yield factory

    for session in created:
        await session.teardown(reason="test finished", keep_snapshot=False)


def with_config(config: PlaybackConfig, **changes) -> PlaybackConfig:
    return replace(config, **changes)
