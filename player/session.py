"""
PlaybackSession: the per-guild playback state machine.

A session owns its queue, history, play counts and the transport binding.
Every external event (an enqueue, the transport going idle, a lost
connection, a timer) is funnelled through a handler that asks
`player.state.transition` whether the event is still relevant before
touching any state.

At most one dispatch is in flight: `_dispatch` checks `now_playing` and
`_pending` synchronously, before the first suspension point.
"""
import asyncio
import logging
import random
import time
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Set

import aiosqlite
import discord

from config import DuplicatePolicy, PlaybackConfig
from player.errors import (
    EnqueueRejected,
    FetchError,
    FetchKind,
    RejectionKind,
    ResolutionError,
    ResolutionKind,
    SessionTerminated,
    TransportError,
)
from player.models import EventKind, HistoryEntry, MediaDescriptor, QueueEntry, SessionEvent
from player.state import SessionState, Trigger, transition
from player.tasks import TaskScheduler
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Session'))

# Preference lookups and FFmpeg can fail while an audio source is built
RESOURCE_ERRORS = (aiosqlite.Error, discord.ClientException, OSError)


class PlaybackSession:
    """Queue, now playing and transport binding for one guild."""

    def __init__(self, guild_id: int, config: PlaybackConfig, *, transport, resolver, fetcher, cache,
                 effects=None, persistence=None, sink=None, registry=None, radio=None,
                 statistics=None, volume_prefs=None,
                 voice_channel_id: Optional[int] = None, text_channel_id: Optional[int] = None):
        self.guild_id = guild_id
        self.config = config
        self.transport = transport
        self.resolver = resolver
        self.fetcher = fetcher
        self.cache = cache
        self.effects = effects
        self.persistence = persistence
        self.sink = sink
        self.registry = registry
        self.radio = radio
        self.statistics = statistics
        self.volume_prefs = volume_prefs
        self.voice_channel_id = voice_channel_id
        self.text_channel_id = text_channel_id

        self.state = SessionState.IDLE
        self.queue: List[QueueEntry] = []
        self.now_playing: Optional[QueueEntry] = None
        self.history: Deque[HistoryEntry] = deque(maxlen=max(1, config.history_max_entries))
        self.play_count: Dict[str, int] = {}
        self.loop_enabled = False
        self.reconnect_attempts = 0
        self.volume = config.default_volume / 100

        self._pending: Optional[QueueEntry] = None
        self._file_path: Optional[Path] = None
        self._downloads: Dict[str, asyncio.Task] = {}
        self._deletions: Set[str] = set()
        self._resolving = 0
        self._consecutive_failures = 0
        self._skip_requested = False
        self._play_offset = 0.0
        self._play_started: Optional[float] = None
        self._paused_since: Optional[float] = None
        self._tasks = TaskScheduler(f"Session {guild_id}")

        transport.on_idle(self.handle_track_end)
        transport.on_disconnected(self.handle_disconnect)

    def __repr__(self):
        return f"<PlaybackSession guild={self.guild_id} state={self.state.value} queued={len(self.queue)}>"

    # --- State helpers ---

    @property
    def terminated(self) -> bool:
        return self.state is SessionState.TERMINATED

    @property
    def downloading(self) -> Set[str]:
        """Track ids with a fetch in flight."""
        return set(self._downloads)

    @property
    def is_paused(self) -> bool:
        return self.transport.is_paused

    @property
    def position(self) -> int:
        """Whole seconds into the current track, paused time excluded."""
        if self.now_playing is None or self._play_started is None:
            return 0
        now = self._paused_since if self._paused_since is not None else time.monotonic()
        return int(max(0.0, self._play_offset + now - self._play_started))

    def _mark_started(self, offset: float = 0):
        self._play_offset = offset
        self._play_started = time.monotonic()
        self._paused_since = None

    def _is_live(self) -> bool:
        if self.terminated:
            return False
        return self.registry is None or self.registry.is_registered(self.guild_id, self)

    def _fire(self, trigger: Trigger) -> bool:
        new_state = transition(self.state, trigger)
        if new_state is None:
            logger.debug(f"Guild {self.guild_id}: ignoring {trigger.value} in state {self.state.value}")
            return False
        if new_state is not self.state:
            logger.info(f"Guild {self.guild_id}: {self.state.value} -> {new_state.value} ({trigger.value})")
            self.state = new_state
        return True

    def _emit(self, kind: EventKind, **fields):
        if self.sink is not None:
            self.sink(SessionEvent(kind=kind, guild_id=self.guild_id, **fields))

    # --- Enqueue ---

    async def enqueue(self, query: str, requester_name: str = "Unknown",
                      requester_id: Optional[int] = None) -> List[QueueEntry]:
        """
        Resolve `query` (URL, search text or Spotify link) and queue the result.

        Raises ResolutionError or EnqueueRejected when nothing could be queued;
        the queue is left untouched in that case.
        """
        if self.terminated:
            raise SessionTerminated(detail="Session has been stopped")

        self._fire(Trigger.ENQUEUE)
        self._resolving += 1
        try:
            descriptors = await self._resolve_request(query)
        finally:
            self._resolving -= 1
            self._resolved()

        if not self._is_live():
            raise SessionTerminated(detail="Session stopped while resolving")

        added: List[QueueEntry] = []
        first_rejection: Optional[EnqueueRejected] = None
        for descriptor in descriptors:
            try:
                added.append(self._admit(descriptor, requester_name, requester_id))
            except EnqueueRejected as e:
                logger.info(f"Guild {self.guild_id}: rejected '{descriptor.title}' ({e.kind.value})")
                first_rejection = first_rejection or e
                if e.kind is RejectionKind.QUEUE_FULL:
                    break

        if not added:
            raise first_rejection or ResolutionError(ResolutionKind.NO_RESULTS, query)

        if len(added) == 1:
            self._emit(EventKind.ENQUEUED, entry=added[0], position=len(self.queue))
        else:
            self._emit(EventKind.PLAYLIST_ENQUEUED, entry=added[0], count=len(added))

        await self.save()
        self._dispatch()
        return added

    def _resolved(self):
        if self._resolving == 0 and self._pending is None:
            self._fire(Trigger.RESOLVED)

    async def _resolve_request(self, query: str) -> List[MediaDescriptor]:
        query = (query or "").strip()
        if not query:
            raise ResolutionError(ResolutionKind.INVALID_INPUT, "Empty request")

        if self.resolver.is_external_url(query):
            name, searches = await self.resolver.expand_external(query)
            descriptors = []
            for text in searches:
                if not self._is_live():
                    raise SessionTerminated(detail="Session stopped while resolving")
                try:
                    descriptors.append(await self._search_and_pick(text))
                except ResolutionError as e:
                    logger.info(f"No match for '{text}' from {name}: {e}")
            if not descriptors:
                raise ResolutionError(ResolutionKind.NO_RESULTS, name)
            return descriptors

        if self.resolver.is_url(query):
            descriptors = await self.resolver.resolve(query)
            if len(descriptors) == 1:
                problem = self._candidate_problem(descriptors[0])
                if problem is not None:
                    raise ResolutionError(problem, descriptors[0].title)
            return descriptors

        return [await self._search_and_pick(query)]

    @staticmethod
    def _candidate_problem(descriptor: MediaDescriptor) -> Optional[ResolutionKind]:
        if descriptor.age_restricted:
            return ResolutionKind.AGE_RESTRICTED
        if not descriptor.available:
            return ResolutionKind.UNAVAILABLE
        return None

    def _may_skip(self, kind: Optional[ResolutionKind]) -> bool:
        if kind is ResolutionKind.AGE_RESTRICTED:
            return self.config.skip_age_restricted
        if kind is ResolutionKind.UNAVAILABLE:
            return self.config.skip_unavailable
        return False

    async def _search_and_pick(self, text: str) -> MediaDescriptor:
        """
        Search and take the first playable candidate.

        Age-restricted or unavailable candidates (and searches that fail for
        those reasons) are skipped while the matching skip flag is on and
        retries remain.
        """
        max_retries = self.config.max_retry_attempts
        count = max(1, min(max_retries + 1, self.config.search_results_count))

        attempt = 0
        while True:
            try:
                candidates = await self.resolver.search(text, count)
                break
            except ResolutionError as e:
                if self._may_skip(e.kind) and attempt < max_retries:
                    attempt += 1
                    logger.info(f"Search for '{text}' failed ({e.kind.value}), retry {attempt}/{max_retries}")
                    continue
                raise

        if not candidates:
            raise ResolutionError(ResolutionKind.NO_RESULTS, text)

        for index, candidate in enumerate(candidates):
            problem = self._candidate_problem(candidate)
            if problem is None:
                return candidate
            if not self._may_skip(problem) or index >= max_retries:
                raise ResolutionError(problem, candidate.title)
            logger.info(f"Skipping '{candidate.title}' ({problem.value}), trying next result")

        raise ResolutionError(self._candidate_problem(candidates[-1]) or ResolutionKind.NO_RESULTS, text)

    def _admit(self, descriptor: MediaDescriptor, requester_name: str,
               requester_id: Optional[int], *, quiet: bool = False) -> QueueEntry:
        """Apply queue rules and append. Raises EnqueueRejected."""
        cfg = self.config
        if descriptor.approx_size_bytes and descriptor.approx_size_bytes > cfg.max_file_size_bytes:
            raise EnqueueRejected(RejectionKind.TOO_LARGE, descriptor.title)
        if cfg.max_queue_size and len(self.queue) >= cfg.max_queue_size:
            raise EnqueueRejected(RejectionKind.QUEUE_FULL, f"Queue is limited to {cfg.max_queue_size} songs")
        if cfg.max_song_duration_seconds and descriptor.duration > cfg.max_song_duration_seconds:
            raise EnqueueRejected(RejectionKind.TOO_LONG, descriptor.title)

        entry = QueueEntry.from_descriptor(descriptor, requester_name, requester_id)
        if entry in self.queue and cfg.duplicate_policy is not DuplicatePolicy.ALLOW:
            position = self.queue.index(entry) + 1
            if cfg.duplicate_policy is DuplicatePolicy.BLOCK:
                raise EnqueueRejected(RejectionKind.DUPLICATE, f"Already queued at position {position}")
            if not quiet:
                self._emit(EventKind.DUPLICATE_WARNING, entry=entry, position=position)

        self.queue.append(entry)
        return entry

    # --- Dispatch ---

    def _radio_wants_refill(self) -> bool:
        return self.radio is not None and self.radio.should_refill(self.guild_id, len(self.queue))

    def _dispatch(self):
        """Start the queue head unless a track is playing or being prepared."""
        if self.now_playing is not None or self._pending is not None:
            return
        if self.state in (SessionState.RECONNECTING, SessionState.TERMINATED):
            return

        if not self.queue:
            if self._radio_wants_refill():
                if not self._tasks.has("radio"):
                    self._tasks.spawn(self._refill_and_dispatch(), key="radio")
            else:
                self._exhausted()
            return

        entry = self.queue.pop(0)
        self._pending = entry
        self._fire(Trigger.DISPATCH)
        self._tasks.spawn(self._start(entry))

    def _exhausted(self):
        self._fire(Trigger.EXHAUSTED)
        if self.config.disconnect_on_empty_queue:
            logger.info(f"Guild {self.guild_id}: queue finished, leaving")
            self._emit(EventKind.QUEUE_FINISHED)
            self._tasks.spawn(self.teardown(reason="queue finished", keep_snapshot=False))
        else:
            self._emit(EventKind.QUEUE_EMPTY)

    async def _start(self, entry: QueueEntry):
        try:
            path = await self._obtain(entry)
        except FetchError as e:
            self._fetch_failed(entry, e.kind, e.detail)
            return
        except (OSError, aiosqlite.Error) as e:
            logger.error(f"Unexpected error preparing '{entry.title}': {e}")
            self._fetch_failed(entry, FetchKind.NETWORK, str(e))
            return

        if self._pending is not entry or not self._is_live():
            logger.debug(f"Guild {self.guild_id}: dropping stale fetch result for {entry.id}")
            return
        if self.state is SessionState.RECONNECTING:
            # Resumed by the reconnect handler
            self.queue.insert(0, entry)
            self._pending = None
            return

        if not self.transport.is_connected:
            try:
                await self.transport.connect()
            except TransportError as e:
                logger.error(f"Guild {self.guild_id}: could not connect: {e}")
                self.queue.insert(0, entry)
                self._pending = None
                self._emit(EventKind.ERROR, entry=entry, detail=str(e))
                await self.teardown(reason="connect failed", keep_snapshot=True)
                return
            if self._pending is not entry or not self._is_live():
                return

        try:
            volume = await self._volume_for(entry)
            resource = await self._build_resource(entry, path, volume)
        except RESOURCE_ERRORS as e:
            logger.error(f"Guild {self.guild_id}: could not prepare audio for '{entry.title}': {e}")
            self._fetch_failed(entry, FetchKind.DECODE, str(e))
            return
        if self._pending is not entry or not self._is_live() or self.state is SessionState.RECONNECTING:
            if self._pending is entry and self.state is SessionState.RECONNECTING:
                self.queue.insert(0, entry)
                self._pending = None
            return

        try:
            self.transport.play(resource)
        except TransportError as e:
            self._fetch_failed(entry, FetchKind.NETWORK, str(e))
            return

        self._pending = None
        self.now_playing = entry
        self._file_path = path
        self.volume = volume
        self._mark_started()
        self._fire(Trigger.BOUND)
        self._consecutive_failures = 0
        self._emit(EventKind.NOW_PLAYING, entry=entry)
        self._start_status_updates()

        self._prefetch_upcoming()
        if self._radio_wants_refill() and not self._tasks.has("radio"):
            self._tasks.spawn(self.refill_radio(), key="radio")

    def _fetch_failed(self, entry: QueueEntry, kind, detail: str):
        if self._pending is not entry or not self._is_live():
            return
        self._pending = None
        self._consecutive_failures += 1
        logger.warning(f"Guild {self.guild_id}: could not play '{entry.title}' ({kind.value}): {detail}")
        self._emit(EventKind.ERROR, entry=entry, error=kind, detail=detail)

        if self._consecutive_failures >= self.config.max_consecutive_skips:
            logger.error(f"Guild {self.guild_id}: {self._consecutive_failures} tracks failed in a row, pausing dispatch")
            self._consecutive_failures = 0
            self._fire(Trigger.EXHAUSTED)
            self._emit(EventKind.ERROR, detail="Too many tracks failed in a row. Use /play or /skip to continue.")
            return
        self._dispatch()

    async def _obtain(self, entry: QueueEntry) -> Path:
        """Local file for `entry`: the cache on a hit, a download otherwise."""
        path = self.cache.path_for(entry.id)

        inflight = self._downloads.get(entry.id)
        if inflight is not None and not inflight.done():
            logger.debug(f"Waiting for in-flight prefetch of {entry.id}")
            await asyncio.wait({inflight})

        if self.cache.check_hit(entry.id):
            self.cache.touch(entry.id)
            return path

        self._emit(EventKind.DOWNLOADING, entry=entry)
        task = asyncio.ensure_future(self.fetcher.fetch(entry, path))
        self._downloads[entry.id] = task
        try:
            return await task
        finally:
            if self._downloads.get(entry.id) is task:
                del self._downloads[entry.id]

    async def _volume_for(self, entry: QueueEntry) -> float:
        if self.config.user_volume_enabled and self.volume_prefs is not None and entry.requester_id is not None:
            return await self.volume_prefs.get_volume(entry.requester_id) / 100
        return self.volume

    async def _build_resource(self, entry: QueueEntry, path: Path, volume: float, start: float = 0):
        if self.effects is None:
            return str(path)
        effect_id = await self.effects.get_user_effect(entry.requester_id)
        return self.effects.build_transform(effect_id, str(path), volume, start)

    # --- Now playing refresh ---

    def _start_status_updates(self):
        interval = self.config.now_playing_update_seconds
        if interval > 0 and self.now_playing is not None:
            self._tasks.spawn(self._status_loop(self.now_playing, interval), key="status")

    async def _status_loop(self, entry: QueueEntry, interval: float):
        while True:
            await asyncio.sleep(interval)
            if self.now_playing is not entry or self.state is not SessionState.STREAMING or not self._is_live():
                return
            if entry.duration and self.position >= entry.duration:
                return
            self._emit_status()

    def _emit_status(self):
        if self.config.now_playing_update_seconds > 0 and self.now_playing is not None:
            self._emit(EventKind.STATUS_UPDATE, entry=self.now_playing,
                       elapsed=self.position, paused=self.is_paused)

    # --- Prefetch ---

    def _prefetch_upcoming(self):
        for entry in self.queue[:self.config.preemptive_download_count]:
            if entry.id in self._downloads or self.cache.path_for(entry.id).is_file():
                continue
            task = self._tasks.spawn(self._prefetch(entry), key=f"prefetch:{entry.id}")
            if task is not None:
                self._downloads[entry.id] = task

    async def _prefetch(self, entry: QueueEntry):
        try:
            await self.fetcher.fetch(entry, self.cache.path_for(entry.id))
            logger.debug(f"Prefetched '{entry.title}'")
        except FetchError as e:
            logger.info(f"Prefetch of '{entry.title}' failed ({e.kind.value}): {e.detail}")
        finally:
            if self._downloads.get(entry.id) is asyncio.current_task():
                del self._downloads[entry.id]

    # --- Completion ---

    def handle_track_end(self, error: Optional[Exception] = None):
        """Completion hook: the transport finished or stopped the bound resource."""
        finished = self.now_playing
        if finished is None or not self._fire(Trigger.TRACK_END):
            logger.debug(f"Guild {self.guild_id}: ignoring stale idle signal")
            return
        if error:
            logger.error(f"Guild {self.guild_id}: playback error on '{finished.title}': {error}")

        skipped, self._skip_requested = self._skip_requested, False
        self._tasks.cancel("status")
        self.now_playing = None
        self._file_path = None
        self._play_started = None

        if self.loop_enabled and not skipped:
            self.queue.insert(0, finished)
        self._record(finished)
        self._schedule_deletion(finished)
        self._dispatch()

    def _record(self, entry: QueueEntry):
        self.play_count[entry.id] = self.play_count.get(entry.id, 0) + 1
        if self.config.history_enabled:
            self.history.appendleft(HistoryEntry(entry=entry))
        if self.config.statistics_enabled and self.statistics is not None:
            self._tasks.spawn(self._store_statistics(entry))

    async def _store_statistics(self, entry: QueueEntry):
        try:
            await self.statistics.add_to_history(
                self.guild_id, entry.id, entry.title, entry.source_url,
                entry.duration, entry.requester_name, entry.requester_id,
            )
            await self.statistics.increment_play_count(self.guild_id, entry.id, entry.title)
        except aiosqlite.Error as e:
            logger.error(f"Failed to record statistics for {entry.id}: {e}")

    def _in_use(self, track_id: str) -> bool:
        if self.now_playing is not None and self.now_playing.id == track_id:
            return True
        if self._pending is not None and self._pending.id == track_id:
            return True
        return track_id in self._downloads or any(e.id == track_id for e in self.queue)

    def _schedule_deletion(self, entry: QueueEntry):
        # With the smart cache on, CacheManager.clean owns file lifetime
        if self.cache.enabled:
            return
        self._deletions.add(entry.id)
        self._tasks.call_later(
            self.config.post_play_delete_delay_seconds,
            lambda: self._delete_if_unused(entry.id),
            key=f"delete:{entry.id}",
        )

    async def _delete_if_unused(self, track_id: str):
        self._deletions.discard(track_id)
        if not self._is_live() or self._in_use(track_id):
            return
        self.cache.delete(track_id)

    # --- Connection loss ---

    def handle_disconnect(self):
        """The transport lost its connection unexpectedly."""
        if self.terminated:
            return
        if not self.config.reconnect.enabled:
            self._emit(EventKind.CONNECTION_LOST)
            self._tasks.spawn(self.teardown(reason="connection lost", keep_snapshot=True))
            return
        if not self._fire(Trigger.DISCONNECT):
            return
        self.reconnect_attempts = 0
        self._tasks.spawn(self._reconnect_loop(), key="reconnect")

    async def _reconnect_loop(self):
        settings = self.config.reconnect
        while self.reconnect_attempts < settings.attempts:
            self.reconnect_attempts += 1
            self._emit(EventKind.RECONNECT_STATUS, attempt=self.reconnect_attempts,
                       max_attempts=settings.attempts)
            await asyncio.sleep(settings.delay_seconds)
            if self.state is not SessionState.RECONNECTING:
                return
            try:
                await self.transport.reconnect()
            except TransportError as e:
                logger.warning(f"Guild {self.guild_id}: reconnect attempt "
                               f"{self.reconnect_attempts}/{settings.attempts} failed: {e}")
                continue
            if self.state is not SessionState.RECONNECTING:
                return
            await self._resume_after_reconnect()
            return

        logger.error(f"Guild {self.guild_id}: giving up after {settings.attempts} reconnect attempt(s)")
        self._emit(EventKind.CONNECTION_LOST, attempt=self.reconnect_attempts, max_attempts=settings.attempts)
        await self.teardown(reason="connection lost", keep_snapshot=True)

    async def _resume_after_reconnect(self):
        self.reconnect_attempts = 0
        self._emit(EventKind.RECONNECTED)
        entry, path = self.now_playing, self._file_path

        if entry is not None:
            try:
                if path is None or not path.is_file():
                    raise FileNotFoundError(f"{entry.id} is no longer on disk")
                resource = await self._build_resource(entry, path, self.volume)
                if self.state is not SessionState.RECONNECTING:
                    return
                self.transport.play(resource)
            except TransportError as e:
                self._resume_failed(entry, FetchKind.NETWORK, str(e))
            except RESOURCE_ERRORS as e:
                self._resume_failed(entry, FetchKind.DECODE, str(e))
            else:
                self._mark_started()
                self._fire(Trigger.BOUND)
                self._start_status_updates()
                logger.info(f"Guild {self.guild_id}: resumed '{entry.title}' after reconnect")
                return
            if self.state is not SessionState.RECONNECTING:
                return

        self.now_playing = None
        self._file_path = None
        self._play_started = None
        self._fire(Trigger.RECONNECTED)
        if self._pending is not None:
            self._fire(Trigger.DISPATCH)
        else:
            self._dispatch()

    def _resume_failed(self, entry: QueueEntry, kind: FetchKind, detail: str):
        logger.error(f"Guild {self.guild_id}: could not resume '{entry.title}' after reconnect: {detail}")
        self._emit(EventKind.ERROR, entry=entry, error=kind, detail=detail)

    # --- Termination ---

    async def stop(self):
        """Clear everything, leave the channel and forget the saved queue."""
        if self.terminated:
            return
        self.queue.clear()
        self._fire(Trigger.STOP)
        logger.info(f"Guild {self.guild_id}: stopped")
        self._emit(EventKind.STOPPED)
        await self._shutdown(snapshot=None)

    async def teardown(self, reason: str = "", *, keep_snapshot: bool = True):
        """End the session without clearing the queue. The snapshot is kept when asked."""
        if self.terminated:
            return
        snapshot = self.snapshot() if keep_snapshot else None
        self._fire(Trigger.TEARDOWN)
        logger.info(f"Guild {self.guild_id}: torn down ({reason or 'no reason given'})")
        await self._shutdown(snapshot=snapshot)

    async def _shutdown(self, snapshot: Optional[dict]):
        self._tasks.cancel_all()
        for task in list(self._downloads.values()):
            task.cancel()
        self._downloads.clear()
        self._pending = None

        self.transport.stop(silent=True)
        self.now_playing = None
        self._file_path = None
        self._play_started = None
        try:
            await self.transport.disconnect()
        except TransportError as e:
            logger.warning(f"Guild {self.guild_id}: error leaving voice: {e}")

        if not self.cache.enabled:
            for track_id in self._deletions:
                self.cache.delete(track_id)
        self._deletions.clear()

        if self.persistence is not None:
            if snapshot is not None and self.config.persistence_enabled:
                await self.persistence.save(self.guild_id, snapshot)
            elif snapshot is None:
                await self.persistence.delete(self.guild_id)

        if self.radio is not None:
            self.radio.stop(self.guild_id)
        if self.registry is not None:
            self.registry.remove(self.guild_id, self)

    # --- Commands ---

    def skip(self) -> Optional[QueueEntry]:
        """Stop the current track; the completion hook advances the queue."""
        entry = self.now_playing
        if entry is None or self.state is not SessionState.STREAMING:
            return None
        self._skip_requested = True
        self.transport.stop()
        return entry

    def pause(self) -> bool:
        if self.now_playing is None or not self.transport.pause():
            return False
        self._paused_since = time.monotonic()
        self._tasks.cancel("status")
        self._emit_status()
        return True

    def resume(self) -> bool:
        if self.now_playing is None:
            if self.queue and self._pending is None:
                self._consecutive_failures = 0
                self._dispatch()
                return True
            return False
        if not self.transport.resume():
            return False
        if self._paused_since is not None and self._play_started is not None:
            self._play_started += time.monotonic() - self._paused_since
        self._paused_since = None
        self._emit_status()
        self._start_status_updates()
        return True

    async def seek(self, seconds: int) -> bool:
        """
        Restart the current track `seconds` in.

        False when nothing is streaming or `seconds` lies outside the
        track's duration. The queue and history are not touched.
        """
        entry, path = self.now_playing, self._file_path
        if entry is None or path is None or self.state is not SessionState.STREAMING:
            return False
        if not 0 <= seconds <= entry.duration:
            return False

        try:
            if not path.is_file():
                raise FileNotFoundError(f"{entry.id} is no longer on disk")
            resource = await self._build_resource(entry, path, self.volume, start=seconds)
        except RESOURCE_ERRORS as e:
            logger.error(f"Guild {self.guild_id}: could not seek in '{entry.title}': {e}")
            return False
        if self.now_playing is not entry or self.state is not SessionState.STREAMING:
            return False

        try:
            self.transport.play(resource, start=seconds)
        except TransportError as e:
            # The old player is already gone
            logger.error(f"Guild {self.guild_id}: seek lost '{entry.title}': {e}")
            self._emit(EventKind.ERROR, entry=entry, error=FetchKind.NETWORK, detail=str(e))
            self._tasks.cancel("status")
            self.now_playing = None
            self._file_path = None
            self._play_started = None
            self._fire(Trigger.TRACK_END)
            self._dispatch()
            return False

        self._mark_started(seconds)
        self._start_status_updates()
        logger.info(f"Guild {self.guild_id}: seeked '{entry.title}' to {seconds}s")
        return True

    async def shuffle(self) -> int:
        random.shuffle(self.queue)
        await self.save()
        return len(self.queue)

    async def toggle_loop(self) -> bool:
        self.loop_enabled = not self.loop_enabled
        await self.save()
        return self.loop_enabled

    async def clear(self) -> int:
        count = len(self.queue)
        self.queue.clear()
        await self.save()
        return count

    async def remove(self, position: int) -> Optional[QueueEntry]:
        """Remove the entry at a 1-based queue position."""
        if not 1 <= position <= len(self.queue):
            return None
        entry = self.queue.pop(position - 1)
        await self.save()
        return entry

    async def set_volume(self, percent: int, user_id: Optional[int] = None) -> bool:
        if not 0 <= percent <= 100:
            return False
        self.volume = percent / 100
        self.transport.set_volume(self.volume)
        if self.config.user_volume_enabled and self.volume_prefs is not None and user_id is not None:
            await self.volume_prefs.set_volume(user_id, percent)
        return True

    def get_history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        entries = list(self.history)
        return entries[:limit] if limit else entries

    def get_play_count(self, track_id: str) -> int:
        return self.play_count.get(track_id, 0)

    # --- Persistence ---

    def snapshot(self) -> dict:
        return {
            "queue": [e.to_dict() for e in self.queue],
            "now_playing": self.now_playing.to_dict() if self.now_playing else None,
            "loop": self.loop_enabled,
            "history": [h.to_dict() for h in self.history],
            "play_count": dict(self.play_count),
            "volume": round(self.volume * 100),
            "voice_channel_id": self.voice_channel_id,
            "text_channel_id": self.text_channel_id,
        }

    async def save(self) -> bool:
        if self.persistence is None or not self.config.persistence_enabled or self.terminated:
            return False
        return await self.persistence.save(self.guild_id, self.snapshot())

    async def restore(self) -> int:
        """Queue a saved snapshot (now playing first) and start it. Returns entries restored."""
        if self.terminated:
            raise SessionTerminated(detail="Session has been stopped")
        if self.persistence is None:
            return 0

        state = await self.persistence.load(self.guild_id)
        if not state:
            return 0
        await self.persistence.delete(self.guild_id)

        try:
            entries = [QueueEntry.from_dict(d) for d in state.get("queue") or []]
            if state.get("now_playing"):
                entries.insert(0, QueueEntry.from_dict(state["now_playing"]))
            history = [HistoryEntry.from_dict(h) for h in state.get("history") or []]
            counts = {str(k): int(v) for k, v in (state.get("play_count") or {}).items()}
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Guild {self.guild_id}: saved queue is unreadable: {e}")
            return 0

        if not self._is_live():
            raise SessionTerminated(detail="Session stopped while restoring")

        self.queue.extend(entries)
        self.loop_enabled = bool(state.get("loop", False))
        if not self.history:
            for item in reversed(history):
                self.history.appendleft(item)
        for track_id, count in counts.items():
            self.play_count[track_id] = max(self.play_count.get(track_id, 0), count)

        logger.info(f"Guild {self.guild_id}: restored {len(entries)} track(s) from saved queue")
        self._dispatch()
        return len(entries)

    # --- Radio ---

    async def refill_radio(self) -> int:
        """Top the queue up with radio suggestions. Returns how many were added."""
        if not self._radio_wants_refill():
            return 0

        seed = self.now_playing or (self.history[0].entry if self.history else None)
        suggestions = await self.radio.get_next_songs(self.guild_id, seed.title if seed else "")
        if not self._is_live():
            return 0

        added = 0
        for descriptor in suggestions:
            if self._candidate_problem(descriptor) is not None:
                continue
            try:
                self._admit(descriptor, "Radio", None, quiet=True)
            except EnqueueRejected as e:
                if e.kind is RejectionKind.QUEUE_FULL:
                    break
                continue
            added += 1

        if added:
            logger.info(f"Guild {self.guild_id}: radio added {added} track(s)")
            self._emit(EventKind.RADIO_REFILLED, count=added)
            await self.save()
            if self.now_playing is not None:
                self._prefetch_upcoming()
        return added

    async def _refill_and_dispatch(self):
        added = await self.refill_radio()
        if not added and not self.queue and self.now_playing is None and self._pending is None:
            self._exhausted()
            return
        self._dispatch()
