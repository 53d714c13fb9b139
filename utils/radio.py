"""
Radio mode: keeps a queue topped up with tracks related to a seed.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from config import RadioSettings
from player.errors import ResolutionError
from player.models import MediaDescriptor
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Radio'))


@dataclass
class RadioInfo:
    seed_id: str
    added: Set[str] = field(default_factory=set)


class RadioMode:
    """Per-guild radio runs. Suggestions are never repeated within one run."""

    def __init__(self, settings: RadioSettings, resolver):
        self.settings = settings
        self.resolver = resolver
        self._active: Dict[int, RadioInfo] = {}

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def is_active(self, guild_id: int) -> bool:
        return guild_id in self._active

    def start(self, guild_id: int, seed_id: str) -> bool:
        if not self.enabled:
            return False
        self._active[guild_id] = RadioInfo(seed_id=seed_id, added={seed_id})
        logger.info(f"Radio started in guild {guild_id} (seed {seed_id})")
        return True

    def stop(self, guild_id: int):
        if self._active.pop(guild_id, None) is not None:
            logger.info(f"Radio stopped in guild {guild_id}")

    def get_info(self, guild_id: int) -> Optional[RadioInfo]:
        return self._active.get(guild_id)

    def should_refill(self, guild_id: int, queue_size: int) -> bool:
        return self.is_active(guild_id) and queue_size <= self.settings.queue_refill_at

    async def get_next_songs(self, guild_id: int, seed_title: str, seed_artist: str = "") -> List[MediaDescriptor]:
        """Fresh suggestions for the guild's seed, with already-added tracks removed."""
        info = self.get_info(guild_id)
        if info is None:
            return []

        try:
            candidates = await self.resolver.related(info.seed_id, self.settings.fetch_count)
            if not candidates:
                query = f"{seed_artist} {seed_title}".strip() if seed_artist else seed_title
                candidates = await self.resolver.search(query, self.settings.fetch_count)
        except ResolutionError as e:
            logger.warning(f"Radio lookup failed in guild {guild_id}: {e}")
            return []

        fresh = []
        for candidate in candidates:
            if candidate.id in info.added:
                continue
            info.added.add(candidate.id)
            fresh.append(candidate)
        return fresh

    def mark_as_added(self, guild_id: int, track_id: str):
        info = self.get_info(guild_id)
        if info:
            info.added.add(track_id)

    def update_seed(self, guild_id: int, seed_id: str):
        info = self.get_info(guild_id)
        if info:
            info.seed_id = seed_id

    def clear_history(self, guild_id: int):
        info = self.get_info(guild_id)
        if info:
            info.added = {info.seed_id}

    def get_stats(self, guild_id: int) -> Optional[Dict[str, object]]:
        info = self.get_info(guild_id)
        if info is None:
            return None
        return {"seed_id": info.seed_id, "songs_added": len(info.added), "is_active": True}
