import asyncio

import aiosqlite
import discord
import pytest

from config import CacheSettings, DuplicatePolicy, ReconnectSettings
from player.errors import (
    EnqueueRejected,
    FetchError,
    FetchKind,
    RejectionKind,
    ResolutionError,
    ResolutionKind,
    SessionTerminated,
)
from player.models import EventKind
from player.state import SessionState

from conftest import FakeTransport, settle, track, until, until_async, with_config


def playing(session):
    return session.now_playing.id if session.now_playing else None


async def test_first_enqueue_starts_playback(make_session, resolver, sink):
    a = resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(transport=transport)

    added = await session.enqueue("Song a", "alice", 10)

    assert [e.id for e in added] == ["a"]
    await until(lambda: session.now_playing is not None)
    assert playing(session) == "a"
    assert session.state is SessionState.STREAMING
    assert transport.connected
    assert transport.played == [str(session.cache.path_for(a.id))]
    assert EventKind.ENQUEUED in sink.kinds()
    assert EventKind.NOW_PLAYING in sink.kinds()


async def test_queue_is_played_in_enqueue_order(make_session, resolver, sink):
    for name in "abc":
        resolver.add(track(name))
    transport = FakeTransport()
    session = make_session(transport=transport)

    for name in "abc":
        await session.enqueue(f"Song {name}")
    await until(lambda: playing(session) == "a")
    assert [e.id for e in session.queue] == ["b", "c"]

    transport.finish()
    await until(lambda: playing(session) == "b")
    transport.finish()
    await until(lambda: playing(session) == "c")

    assert [e.entry.id for e in sink.of(EventKind.NOW_PLAYING)] == ["a", "b", "c"]


async def test_concurrent_requests_start_only_one_track(make_session, resolver):
    for name in "abc":
        resolver.add(track(name))
    transport = FakeTransport()
    session = make_session(transport=transport)

    await asyncio.gather(*(session.enqueue(f"Song {name}") for name in "abc"))
    await until(lambda: session.now_playing is not None)
    await settle()

    assert len(transport.played) == 1
    assert session.now_playing not in session.queue
    assert len(session.queue) == 2


async def test_play_count_only_grows_on_completion(make_session, resolver):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")
    assert session.get_play_count("a") == 0

    transport.finish()
    await until(lambda: playing(session) == "b")
    assert session.get_play_count("a") == 1
    assert session.get_play_count("b") == 0

    transport.finish()
    await settle()
    assert session.get_play_count("b") == 1
    assert [h.entry.id for h in session.get_history()] == ["b", "a"]


async def test_loop_reinserts_finished_track_at_head(make_session, resolver):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")
    assert await session.toggle_loop() is True

    transport.finish()
    await until(lambda: len(transport.played) == 2)

    assert playing(session) == "a"
    assert [e.id for e in session.queue] == ["b"]
    assert session.get_play_count("a") == 1


async def test_skip_moves_on_even_when_looping(make_session, resolver):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")
    await session.toggle_loop()

    skipped = session.skip()

    assert skipped.id == "a"
    await until(lambda: playing(session) == "b")
    assert session.queue == []


async def test_skip_without_playback_does_nothing(make_session):
    session = make_session()
    assert session.skip() is None


async def test_stale_idle_signal_is_ignored(make_session, resolver):
    session = make_session()

    session.handle_track_end()

    assert session.state is SessionState.IDLE
    assert session.play_count == {}


async def test_failed_fetch_skips_to_next_track(make_session, resolver, fetcher, sink):
    resolver.add(track("a"))
    resolver.add(track("b"))
    fetcher.failures["a"] = FetchError(FetchKind.UNAVAILABLE, "Video unavailable")
    fetcher.gate = asyncio.Event()
    session = make_session()

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    fetcher.gate.set()

    await until(lambda: playing(session) == "b")
    errors = sink.of(EventKind.ERROR)
    assert errors[0].entry.id == "a"
    assert errors[0].error is FetchKind.UNAVAILABLE


class UnreliableEffects:
    """Effect provider whose lookups or FFmpeg spawning can be made to fail."""

    def __init__(self, lookup_failures: int = 0, ffmpeg_missing: bool = False):
        self.lookup_failures = lookup_failures
        self.ffmpeg_missing = ffmpeg_missing

    async def get_user_effect(self, user_id):
        await asyncio.sleep(0)
        if self.lookup_failures > 0:
            self.lookup_failures -= 1
            raise aiosqlite.OperationalError("database is locked")
        return None

    def build_transform(self, effect_id, file_path, volume=1.0, start=0):
        if self.ffmpeg_missing:
            raise discord.ClientException("ffmpeg was not found.")
        return file_path


async def test_effect_lookup_failure_skips_to_next_track(make_session, resolver, fetcher, sink):
    resolver.add(track("a"))
    resolver.add(track("b"))
    fetcher.gate = asyncio.Event()
    session = make_session(effects=UnreliableEffects(lookup_failures=1))

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    fetcher.gate.set()

    await until(lambda: playing(session) == "b")
    errors = sink.of(EventKind.ERROR)
    assert [e.entry.id for e in errors] == ["a"]
    assert errors[0].error is FetchKind.DECODE
    assert session.state is SessionState.STREAMING
    assert session.queue == []


async def test_missing_ffmpeg_does_not_block_later_requests(make_session, resolver, sink):
    resolver.add(track("a"))
    resolver.add(track("b"))
    effects = UnreliableEffects(ffmpeg_missing=True)
    session = make_session(effects=effects)

    await session.enqueue("Song a")
    await until(lambda: sink.of(EventKind.ERROR))
    await settle()
    assert session.now_playing is None
    assert session.state is SessionState.IDLE

    effects.ffmpeg_missing = False
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "b")


async def test_consecutive_failures_pause_dispatch(make_session, resolver, fetcher, sink, config):
    for name in "abcd":
        resolver.add(track(name))
    for name in "abc":
        fetcher.failures[name] = FetchError(FetchKind.NETWORK, "boom")
    fetcher.gate = asyncio.Event()
    session = make_session(with_config(config, max_consecutive_skips=3))

    for name in "abcd":
        await session.enqueue(f"Song {name}")
    fetcher.gate.set()

    await until(lambda: len(sink.of(EventKind.ERROR)) == 4)
    await settle()
    assert session.now_playing is None
    assert [e.id for e in session.queue] == ["d"]
    assert session.state is SessionState.IDLE

    assert session.resume() is True
    await until(lambda: playing(session) == "d")


async def test_duplicate_warn_adds_and_reports_position(make_session, resolver, sink, config):
    resolver.add(track("a"))
    resolver.add(track("b"))
    session = make_session(with_config(config, duplicate_policy=DuplicatePolicy.WARN))

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await session.enqueue("Song b")

    assert [e.id for e in session.queue] == ["b", "b"]
    warning = sink.of(EventKind.DUPLICATE_WARNING)[0]
    assert warning.entry.id == "b"
    assert warning.position == 1


async def test_duplicate_block_rejects(make_session, resolver, config):
    resolver.add(track("a"))
    resolver.add(track("b"))
    session = make_session(with_config(config, duplicate_policy=DuplicatePolicy.BLOCK))

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    with pytest.raises(EnqueueRejected) as excinfo:
        await session.enqueue("Song b")

    assert excinfo.value.kind is RejectionKind.DUPLICATE
    assert [e.id for e in session.queue] == ["b"]


async def test_queue_limits(make_session, resolver, config):
    resolver.add(track("a"))
    resolver.add(track("b"))
    resolver.add(track("c"))
    resolver.add(track("long", duration=7200))
    session = make_session(with_config(config, max_queue_size=1, max_song_duration_seconds=3600))

    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    await session.enqueue("Song b")

    with pytest.raises(EnqueueRejected) as full:
        await session.enqueue("Song c")
    assert full.value.kind is RejectionKind.QUEUE_FULL

    await session.clear()
    with pytest.raises(EnqueueRejected) as too_long:
        await session.enqueue("Song long")
    assert too_long.value.kind is RejectionKind.TOO_LONG


async def test_search_skips_age_restricted_candidate(make_session, resolver):
    resolver.catalog["query"] = [track("x", age_restricted=True), track("y")]
    session = make_session()

    added = await session.enqueue("query")

    assert added[0].id == "y"
    assert resolver.searches == [("query", 4)]


async def test_search_refuses_when_skipping_disabled(make_session, resolver, config):
    resolver.catalog["query"] = [track("x", available=False), track("y")]
    session = make_session(with_config(config, skip_unavailable=False))

    with pytest.raises(ResolutionError) as excinfo:
        await session.enqueue("query")

    assert excinfo.value.kind is ResolutionKind.UNAVAILABLE
    assert session.queue == []


async def test_search_is_retried_after_age_restricted_failure(make_session, resolver):
    resolver.add(track("a"), query="query")
    resolver.search_errors.append(ResolutionError(ResolutionKind.AGE_RESTRICTED, "Sign in to confirm your age"))
    session = make_session()

    added = await session.enqueue("query")

    assert added[0].id == "a"
    assert len(resolver.searches) == 2


async def test_no_results_leaves_queue_untouched(make_session, resolver):
    session = make_session()

    with pytest.raises(ResolutionError) as excinfo:
        await session.enqueue("nothing matches")

    assert excinfo.value.kind is ResolutionKind.NO_RESULTS
    assert session.queue == []
    assert session.state is SessionState.IDLE


async def test_playlist_url_queues_every_entry(make_session, resolver, sink):
    url = "https://www.youtube.com/playlist?list=PL123"
    resolver.catalog[url] = [track("a"), track("b"), track("c")]
    session = make_session()

    added = await session.enqueue(url)

    assert [e.id for e in added] == ["a", "b", "c"]
    assert sink.of(EventKind.PLAYLIST_ENQUEUED)[0].count == 3


async def test_spotify_link_is_expanded_into_searches(make_session, resolver):
    url = "https://open.spotify.com/playlist/abc"
    resolver.add(track("a"), query="Artist - One")
    resolver.add(track("b"), query="Artist - Two")
    resolver.external[url] = ("Road Trip", ["Artist - One", "Artist - Missing", "Artist - Two"])
    session = make_session()

    added = await session.enqueue(url)

    assert [e.id for e in added] == ["a", "b"]


async def test_reconnect_resumes_current_track(make_session, resolver, sink):
    resolver.add(track("a"))
    transport = FakeTransport(reconnect_failures=1)
    session = make_session(transport=transport)

    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    transport.drop()
    assert session.state is SessionState.RECONNECTING

    await until(lambda: session.state is SessionState.STREAMING)
    assert transport.reconnect_calls == 2
    assert playing(session) == "a"
    assert len(transport.played) == 2
    assert session.reconnect_attempts == 0
    assert EventKind.RECONNECTED in sink.kinds()


async def test_track_lost_on_reconnect_is_reported(make_session, resolver, sink):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")

    transport.play_failures = 1
    transport.drop()

    await until(lambda: playing(session) == "b")
    errors = sink.of(EventKind.ERROR)
    assert [e.entry.id for e in errors] == ["a"]
    assert errors[0].error is FetchKind.NETWORK
    assert EventKind.RECONNECTED in sink.kinds()


async def test_reconnect_gives_up_after_max_attempts(make_session, resolver, sink, persistence, config):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport(reconnect_failures=10)
    session = make_session(
        with_config(config, reconnect=ReconnectSettings(attempts=3, delay_seconds=0)),
        transport=transport,
        persistence=persistence,
    )

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")
    transport.drop()

    async def saved_with_current():
        snapshot = await persistence.load(1)
        return snapshot is not None and snapshot["now_playing"] is not None

    await until(lambda: session.terminated)
    await until_async(saved_with_current)
    assert transport.reconnect_calls == 3
    assert [e.attempt for e in sink.of(EventKind.RECONNECT_STATUS)] == [1, 2, 3]
    assert EventKind.CONNECTION_LOST in sink.kinds()

    saved = await persistence.load(1)
    assert saved["now_playing"]["id"] == "a"
    assert [e["id"] for e in saved["queue"]] == ["b"]


async def test_disconnect_without_reconnect_tears_down(make_session, resolver, config):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(
        with_config(config, reconnect=ReconnectSettings(enabled=False)),
        transport=transport,
    )
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    transport.drop()

    await until(lambda: session.terminated)
    assert transport.reconnect_calls == 0


async def test_stop_terminates_session(make_session, resolver, sink):
    resolver.add(track("a"))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")

    await session.stop()
    await settle()

    assert session.terminated
    assert session.queue == []
    assert session.now_playing is None
    assert transport.disconnects == 1
    assert EventKind.STOPPED in sink.kinds()
    assert [e.entry.id for e in sink.of(EventKind.NOW_PLAYING)] == ["a"]

    with pytest.raises(SessionTerminated):
        await session.enqueue("Song a")


async def test_stop_forgets_saved_queue(make_session, resolver, persistence):
    resolver.add(track("a"))
    resolver.add(track("b"))
    session = make_session(persistence=persistence)
    await session.enqueue("Song a")
    await session.enqueue("Song b")
    assert await persistence.load(1) is not None

    await session.stop()

    assert await persistence.load(1) is None


async def test_exhausted_queue_leaves_when_configured(make_session, resolver, sink, config):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(with_config(config, disconnect_on_empty_queue=True), transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    transport.finish()

    await until(lambda: session.terminated)
    assert EventKind.QUEUE_FINISHED in sink.kinds()
    assert transport.disconnects == 1


async def test_exhausted_queue_stays_idle_by_default(make_session, resolver, sink):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    transport.finish()
    await settle()

    assert session.state is SessionState.IDLE
    assert not session.terminated
    assert EventKind.QUEUE_EMPTY in sink.kinds()


async def test_connect_failure_keeps_entry_and_tears_down(make_session, resolver, sink, persistence):
    resolver.add(track("a"))
    session = make_session(transport=FakeTransport(connect_error=True), persistence=persistence)

    await session.enqueue("Song a")

    await until(lambda: session.terminated)
    saved = await persistence.load(1)
    assert [e["id"] for e in saved["queue"]] == ["a"]
    assert sink.of(EventKind.ERROR)[0].entry.id == "a"


async def test_restore_resumes_saved_queue(make_session, resolver, persistence):
    for name in "abc":
        resolver.add(track(name))
    first = make_session(persistence=persistence)
    for name in "abc":
        await first.enqueue(f"Song {name}")
    await until(lambda: playing(first) == "a")
    await first.toggle_loop()
    await first.teardown(reason="restart", keep_snapshot=True)

    second = make_session(persistence=persistence)
    restored = await second.restore()

    assert restored == 3
    await until(lambda: playing(second) == "a")
    assert [e.id for e in second.queue] == ["b", "c"]
    assert second.loop_enabled is True
    assert await persistence.load(1) is None


async def test_restore_without_snapshot(make_session, persistence):
    session = make_session(persistence=persistence)
    assert await session.restore() == 0


async def test_deferred_deletion_when_cache_disabled(make_session, resolver, tmp_path, config):
    resolver.add(track("a"))
    cfg = with_config(
        config,
        cache=CacheSettings(enabled=False, directory=tmp_path / "plain"),
        post_play_delete_delay_seconds=0.01,
    )
    transport = FakeTransport()
    session = make_session(cfg, transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    path = session.cache.path_for("a")
    assert path.exists()

    transport.finish()

    await until(lambda: not path.exists())


async def test_deferred_deletion_keeps_file_in_use(make_session, resolver, tmp_path, config):
    resolver.add(track("a"))
    cfg = with_config(
        config,
        cache=CacheSettings(enabled=False, directory=tmp_path / "plain"),
        post_play_delete_delay_seconds=0.01,
    )
    transport = FakeTransport()
    session = make_session(cfg, transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    await session.toggle_loop()

    transport.finish()
    await asyncio.sleep(0.05)

    assert playing(session) == "a"
    assert session.cache.path_for("a").exists()


async def test_pending_deletions_flushed_on_stop(make_session, resolver, tmp_path, config):
    resolver.add(track("a"))
    cfg = with_config(
        config,
        cache=CacheSettings(enabled=False, directory=tmp_path / "plain"),
        post_play_delete_delay_seconds=300,
    )
    transport = FakeTransport()
    session = make_session(cfg, transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    transport.finish()
    await settle()
    path = session.cache.path_for("a")
    assert path.exists()

    await session.stop()

    assert not path.exists()


async def test_smart_cache_keeps_played_files(make_session, resolver):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    transport.finish()
    await settle()

    assert session.cache.path_for("a").exists()


async def test_cached_track_is_not_downloaded_again(make_session, resolver, fetcher):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    transport.finish()
    await settle()

    await session.enqueue("Song a")
    await until(lambda: len(transport.played) == 2)

    assert fetcher.calls == ["a"]
    assert session.cache.get_stats()["hits"] == 1


async def test_upcoming_tracks_are_prefetched(make_session, resolver, fetcher, config):
    resolver.add(track("a"))
    resolver.add(track("b"))
    fetcher.gate = asyncio.Event()
    transport = FakeTransport()
    session = make_session(with_config(config, preemptive_download_count=1), transport=transport)

    await session.enqueue("Song a")
    await session.enqueue("Song b")
    fetcher.gate.set()
    await until(lambda: playing(session) == "a")
    await until(lambda: session.cache.path_for("b").exists())

    transport.finish()
    await until(lambda: playing(session) == "b")
    assert fetcher.calls.count("b") == 1


async def test_pause_resume_and_volume(make_session, resolver):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    assert session.pause() is True
    assert session.is_paused
    assert session.resume() is True
    assert not session.is_paused

    assert await session.set_volume(30) is True
    assert transport.volume == pytest.approx(0.3)
    assert await session.set_volume(150) is False


async def test_seek_restarts_current_track_at_position(make_session, resolver):
    resolver.add(track("a", duration=200))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")

    assert await session.seek(90) is True

    assert transport.starts == [0, 90]
    assert playing(session) == "a"
    assert session.position == 90
    assert [e.id for e in session.queue] == ["b"]
    assert session.play_count == {}


async def test_seek_outside_the_track_is_refused(make_session, resolver):
    resolver.add(track("a", duration=200))
    transport = FakeTransport()
    session = make_session(transport=transport)

    assert await session.seek(10) is False

    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    assert await session.seek(201) is False
    assert await session.seek(-1) is False
    assert transport.starts == [0]


async def test_failed_seek_moves_on(make_session, resolver, sink):
    resolver.add(track("a", duration=200))
    resolver.add(track("b"))
    transport = FakeTransport()
    session = make_session(transport=transport)
    await session.enqueue("Song a")
    await session.enqueue("Song b")
    await until(lambda: playing(session) == "a")

    transport.play_failures = 1
    assert await session.seek(30) is False

    await until(lambda: playing(session) == "b")
    assert [e.entry.id for e in sink.of(EventKind.ERROR)] == ["a"]
    assert session.play_count == {}


async def test_position_stops_while_paused(make_session, resolver):
    resolver.add(track("a", duration=200))
    session = make_session()
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")
    await session.seek(50)

    session.pause()
    frozen = session.position
    await asyncio.sleep(0.02)
    assert session.position == frozen == 50


async def test_now_playing_status_is_refreshed_while_streaming(make_session, resolver, sink, config):
    resolver.add(track("a", duration=600))
    session = make_session(with_config(config, now_playing_update_seconds=0.01))
    await session.enqueue("Song a")

    await until(lambda: len(sink.of(EventKind.STATUS_UPDATE)) >= 2)
    update = sink.of(EventKind.STATUS_UPDATE)[-1]
    assert update.entry.id == "a"
    assert not update.paused

    assert session.pause() is True
    assert sink.of(EventKind.STATUS_UPDATE)[-1].paused
    count = len(sink.of(EventKind.STATUS_UPDATE))
    await asyncio.sleep(0.05)
    assert len(sink.of(EventKind.STATUS_UPDATE)) == count

    assert session.resume() is True
    await until(lambda: len(sink.of(EventKind.STATUS_UPDATE)) >= count + 2)
    assert not sink.of(EventKind.STATUS_UPDATE)[-1].paused


async def test_status_refresh_ends_with_the_track_and_the_session(make_session, resolver, sink, config):
    resolver.add(track("a", duration=600))
    resolver.add(track("b", duration=600))
    transport = FakeTransport()
    session = make_session(with_config(config, now_playing_update_seconds=0.01), transport=transport)
    await session.enqueue("Song a")
    await until(lambda: sink.of(EventKind.STATUS_UPDATE))

    transport.finish()
    await settle()
    count = len(sink.of(EventKind.STATUS_UPDATE))
    await asyncio.sleep(0.05)
    assert len(sink.of(EventKind.STATUS_UPDATE)) == count

    await session.enqueue("Song b")
    await until(lambda: sink.of(EventKind.STATUS_UPDATE)[-1].entry.id == "b")
    await session.stop()
    count = len(sink.of(EventKind.STATUS_UPDATE))
    await asyncio.sleep(0.05)
    assert len(sink.of(EventKind.STATUS_UPDATE)) == count


async def test_status_refresh_disabled_with_zero_interval(make_session, resolver, sink, config):
    resolver.add(track("a"))
    session = make_session(with_config(config, now_playing_update_seconds=0))
    await session.enqueue("Song a")
    await until(lambda: playing(session) == "a")

    session.pause()
    session.resume()
    assert sink.of(EventKind.STATUS_UPDATE) == []


async def test_remove_and_shuffle(make_session, resolver):
    for name in "abcd":
        resolver.add(track(name))
    session = make_session()
    for name in "abcd":
        await session.enqueue(f"Song {name}")
    await until(lambda: playing(session) == "a")

    removed = await session.remove(2)
    assert removed.id == "c"
    assert await session.remove(9) is None

    assert await session.shuffle() == 2
    assert sorted(e.id for e in session.queue) == ["b", "d"]


async def test_snapshot_contents(make_session, resolver):
    resolver.add(track("a"))
    resolver.add(track("b"))
    session = make_session(voice_channel_id=111, text_channel_id=222)
    await session.enqueue("Song a", "alice", 10)
    await session.enqueue("Song b", "bob", 20)
    await until(lambda: playing(session) == "a")

    snapshot = session.snapshot()

    assert snapshot["now_playing"]["id"] == "a"
    assert snapshot["queue"][0]["requester_name"] == "bob"
    assert snapshot["voice_channel_id"] == 111
    assert snapshot["text_channel_id"] == 222
    assert snapshot["volume"] == 50


async def test_statistics_are_recorded(make_session, resolver, database, config):
    resolver.add(track("a"))
    transport = FakeTransport()
    session = make_session(with_config(config, statistics_enabled=True), transport=transport, statistics=database)
    await session.enqueue("Song a", "alice", 10)
    await until(lambda: playing(session) == "a")

    transport.finish()

    async def recorded():
        return await database.get_play_counts(1)

    await until_async(recorded)
    assert await recorded() == {"a": 1}
    history = await database.get_history(1)
    assert history[0]["requester"] == "alice"
