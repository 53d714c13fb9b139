"""
Per-user preference stores (volume level, active audio effect).
Both keep a small in-memory cache in front of the database.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from database import Database
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Preferences'))


class VolumePreferences:
    """Stores each user's preferred volume (0-100)."""

    def __init__(self, database: Database, default_volume: int = 50):
        self.db = database
        self.default_volume = default_volume
        self._cache: Dict[int, int] = {}

    async def get_volume(self, user_id: int) -> int:
        if user_id in self._cache:
            return self._cache[user_id]
        volume = await self.db.get_volume_preference(user_id)
        if volume is None:
            return self.default_volume
        self._cache[user_id] = volume
        return volume

    async def set_volume(self, user_id: int, volume: int) -> bool:
        """Store a preference. Values outside 0-100 are rejected."""
        if not 0 <= volume <= 100:
            return False
        await self.db.set_volume_preference(user_id, volume)
        self._cache[user_id] = volume
        logger.debug(f"User {user_id}: volume preference set to {volume}")
        return True

    async def reset_volume(self, user_id: int) -> bool:
        self._cache.pop(user_id, None)
        return await self.db.delete_volume_preference(user_id)

    async def get_stats(self) -> Dict[str, int]:
        volumes = [row["volume"] for row in await self.db.get_volume_preferences()]
        if not volumes:
            return {
                "total_users": 0,
                "average_volume": self.default_volume,
                "min_volume": 0,
                "max_volume": 100,
            }
        return {
            "total_users": len(volumes),
            "average_volume": round(sum(volumes) / len(volumes)),
            "min_volume": min(volumes),
            "max_volume": max(volumes),
        }

    async def cleanup_old(self, days: float = 90) -> int:
        """Forget preferences untouched for `days`."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        deleted = await self.db.delete_volume_preferences_before(cutoff)
        if deleted:
            self._cache.clear()
            logger.info(f"Removed {deleted} stale volume preference(s)")
        return deleted


class EffectPreferences:
    """Stores each user's active audio effect id."""

    def __init__(self, database: Database):
        self.db = database
        self._cache: Dict[int, Optional[str]] = {}

    async def get_effect(self, user_id: int) -> Optional[str]:
        if user_id not in self._cache:
            self._cache[user_id] = await self.db.get_effect_preference(user_id)
        return self._cache[user_id]

    async def set_effect(self, user_id: int, effect_id: str):
        await self.db.set_effect_preference(user_id, effect_id)
        self._cache[user_id] = effect_id

    async def clear_effect(self, user_id: int) -> bool:
        self._cache[user_id] = None
        return await self.db.delete_effect_preference(user_id)
