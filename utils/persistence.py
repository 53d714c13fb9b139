"""
Queue snapshots for crash recovery.

Failures here never reach playback: writes report False, reads report
"nothing saved".
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import aiosqlite

from database import Database
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Persistence'))

_STORAGE_ERRORS = (aiosqlite.Error, OSError, ValueError, TypeError)


class QueuePersistence:
    """Durable guild id -> session snapshot map backed by the `saved_queues` table."""

    def __init__(self, database: Database, enabled: bool = True):
        self.db = database
        self.enabled = enabled

    async def save(self, guild_id: int, state: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        payload = {k: v for k, v in state.items() if k != "saved_at"}
        try:
            await self.db.save_queue_state(guild_id, payload, datetime.now(timezone.utc).isoformat())
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to save queue for guild {guild_id}: {e}")
            return False
        return True

    async def load(self, guild_id: int) -> Optional[Dict[str, Any]]:
        """Saved snapshot plus its `saved_at` stamp, or None."""
        if not self.enabled:
            return None
        try:
            return await self.db.load_queue_state(guild_id)
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to load queue for guild {guild_id}: {e}")
            return None

    async def delete(self, guild_id: int) -> bool:
        try:
            return await self.db.delete_queue_state(guild_id)
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to delete saved queue for guild {guild_id}: {e}")
            return False

    async def clear_all(self) -> bool:
        try:
            await self.db.clear_queue_states()
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to clear saved queues: {e}")
            return False
        return True

    async def cleanup_old(self, days: float = 7) -> int:
        """Delete snapshots saved more than `days` ago. Returns how many went."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        try:
            deleted = await self.db.delete_queue_states_before(cutoff)
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to clean up old queues: {e}")
            return 0
        if deleted:
            logger.info(f"Removed {deleted} saved queue(s) older than {days} day(s)")
        return deleted

    async def get_stats(self) -> Dict[str, Any]:
        stats = {"total_guilds": 0, "total_songs": 0, "oldest_save": None, "newest_save": None}
        try:
            states = await self.db.get_all_queue_states()
        except _STORAGE_ERRORS as e:
            logger.error(f"Failed to read queue stats: {e}")
            return stats

        saves = []
        for state in states.values():
            stats["total_songs"] += len(state.get("queue") or [])
            if state.get("now_playing"):
                stats["total_songs"] += 1
            saves.append(state["saved_at"])

        stats["total_guilds"] = len(states)
        if saves:
            stats["oldest_save"] = min(saves)
            stats["newest_save"] = max(saves)
        return stats
