"""
Smart cache for downloaded audio files.

Files live in a single directory as `<track id>.mp3`. Hit/miss counters are
kept in `.cache_stats.json` next to them so they survive restarts. Popularity
comes from the play counts the caller passes in; popular files are never
evicted.
"""
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from config import CacheSettings
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Cache'))

STATS_FILE = ".cache_stats.json"
AUDIO_SUFFIX = ".mp3"


@dataclass(frozen=True)
class CacheEntry:
    track_id: str
    path: Path
    size_bytes: int
    last_access: float  # epoch seconds
    play_count: int
    popular: bool


@dataclass(frozen=True)
class CleanResult:
    deleted: int = 0
    kept_popular: int = 0
    freed_bytes: int = 0


class CacheManager:
    """Tracks cached audio files and evicts them under size pressure."""

    def __init__(self, settings: CacheSettings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.directory = Path(settings.directory)
        self._clock = clock
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0}
        self._load_stats()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    @property
    def stats_file(self) -> Path:
        return self.directory / STATS_FILE

    def path_for(self, track_id: str) -> Path:
        return self.directory / f"{track_id}{AUDIO_SUFFIX}"

    # --- Stats file ---

    def _load_stats(self):
        if not self.stats_file.exists():
            return
        try:
            with open(self.stats_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._stats["hits"] = int(data.get("hits", 0))
            self._stats["misses"] = int(data.get("misses", 0))
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load cache stats: {e}")

    def _save_stats(self):
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self.stats_file, 'w', encoding='utf-8') as f:
                json.dump(self._stats, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save cache stats: {e}")

    # --- Lookups ---

    def check_hit(self, track_id: str) -> bool:
        """Return whether the file is cached, counting a hit or a miss."""
        exists = self.path_for(track_id).is_file()
        self._stats["hits" if exists else "misses"] += 1
        self._save_stats()
        return exists

    def touch(self, track_id: str):
        """Refresh the access time of a cached file."""
        try:
            os.utime(self.path_for(track_id), None)
        except OSError as e:
            logger.warning(f"Could not refresh access time for {track_id}: {e}")

    def delete(self, track_id: str) -> bool:
        path = self.path_for(track_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Error deleting {path.name}: {e}")
            return False
        logger.debug(f"Deleted cached file {path.name}")
        return True

    def _scan(self, play_counts: Optional[Mapping[str, int]] = None) -> List[CacheEntry]:
        play_counts = play_counts or {}
        if not self.directory.is_dir():
            return []

        entries = []
        for path in self.directory.glob(f"*{AUDIO_SUFFIX}"):
            try:
                st = path.stat()
            except OSError as e:
                # File might have been deleted mid-scan
                logger.debug(f"Skipping {path.name}: {e}")
                continue
            track_id = path.stem
            count = int(play_counts.get(track_id, 0))
            entries.append(CacheEntry(
                track_id=track_id,
                path=path,
                size_bytes=st.st_size,
                last_access=st.st_atime,
                play_count=count,
                popular=count >= self.settings.popular_threshold,
            ))
        return entries

    def get_stats(self) -> Dict[str, float]:
        entries = self._scan()
        hits, misses = self._stats["hits"], self._stats["misses"]
        lookups = hits + misses
        return {
            "total_files": len(entries),
            "total_size_bytes": sum(e.size_bytes for e in entries),
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
        }

    def list_entries(self, play_counts: Optional[Mapping[str, int]] = None) -> List[CacheEntry]:
        """Cached files, most played first."""
        entries = self._scan(play_counts)
        entries.sort(key=lambda e: e.play_count, reverse=True)
        return entries

    # --- Eviction ---

    def _remove(self, entry: CacheEntry) -> bool:
        try:
            entry.path.unlink()
            return True
        except OSError as e:
            logger.error(f"Error deleting {entry.path.name}: {e}")
            return False

    def clean(self, play_counts: Optional[Mapping[str, int]] = None) -> CleanResult:
        """
        Evict cached files.

        Under the size limit only unpopular files idle for longer than the retention
        window go. Over the limit, unpopular files are removed oldest access first
        until the total drops to the target ratio of the limit.
        """
        if not self.enabled:
            return CleanResult()

        entries = self._scan(play_counts)
        total = sum(e.size_bytes for e in entries)
        popular = [e for e in entries if e.popular]
        unpopular = sorted((e for e in entries if not e.popular), key=lambda e: e.last_access)

        deleted = 0
        freed = 0

        if total <= self.settings.max_size_bytes:
            cutoff = self._clock() - self.settings.retention_days * 86400
            for entry in unpopular:
                if entry.last_access < cutoff and self._remove(entry):
                    deleted += 1
                    freed += entry.size_bytes
        else:
            target = self.settings.max_size_bytes * self.settings.target_ratio
            current = total
            for entry in unpopular:
                if current <= target:
                    break
                if self._remove(entry):
                    deleted += 1
                    freed += entry.size_bytes
                    current -= entry.size_bytes
            if current > target:
                logger.warning(
                    f"Cache still over its size limit after eviction "
                    f"({current / (1024 * 1024):.1f} MB, {len(popular)} popular file(s) kept)"
                )

        if deleted:
            logger.info(f"Cache clean: deleted {deleted} file(s), freed {freed / (1024 * 1024):.2f} MB")
        return CleanResult(deleted=deleted, kept_popular=len(popular), freed_bytes=freed)

    def clear_all(self) -> int:
        """Delete every cached file and reset the counters."""
        deleted = 0
        for entry in self._scan():
            if self._remove(entry):
                deleted += 1

        self._stats = {"hits": 0, "misses": 0}
        try:
            self.stats_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error deleting cache stats: {e}")
        self._save_stats()

        logger.info(f"Cache cleared: {deleted} file(s) deleted")
        return deleted

    def reset_stats(self):
        self._stats = {"hits": 0, "misses": 0}
        self._save_stats()
