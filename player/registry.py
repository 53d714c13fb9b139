"""
Guild id -> live PlaybackSession, at most one per guild.
"""
import logging
from typing import Callable, Dict, Iterator, List, MutableMapping, Optional

from player.session import PlaybackSession
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Registry'))

SessionFactory = Callable[..., PlaybackSession]


class SessionRegistry:
    """
    Owns session lifecycle for every guild.

    All lookups go through this object; the backing mapping is injectable so
    tests (or another store) can supply their own.
    """

    def __init__(self, factory: SessionFactory,
                 storage: Optional[MutableMapping[int, PlaybackSession]] = None):
        self._factory = factory
        self._sessions: MutableMapping[int, PlaybackSession] = storage if storage is not None else {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, guild_id: int) -> bool:
        return self.get(guild_id) is not None

    def __iter__(self) -> Iterator[PlaybackSession]:
        return iter(self.sessions())

    def get(self, guild_id: int) -> Optional[PlaybackSession]:
        session = self._sessions.get(guild_id)
        if session is not None and session.terminated:
            return None
        return session

    def get_or_create(self, guild_id: int, **kwargs) -> PlaybackSession:
        """
        Return the guild's live session, creating it on first use.
        Synchronous, so two concurrent callers can never both create one.
        """
        session = self.get(guild_id)
        if session is not None:
            return session
        session = self._factory(guild_id, self, **kwargs)
        self._sessions[guild_id] = session
        logger.info(f"Created session for guild {guild_id}")
        return session

    def remove(self, guild_id: int, session: PlaybackSession) -> bool:
        """Unregister `session`. A newer session for the same guild is left alone."""
        if self._sessions.get(guild_id) is not session:
            return False
        del self._sessions[guild_id]
        logger.info(f"Removed session for guild {guild_id}")
        return True

    def is_registered(self, guild_id: int, session: PlaybackSession) -> bool:
        return self._sessions.get(guild_id) is session

    def sessions(self) -> List[PlaybackSession]:
        return [s for s in self._sessions.values() if not s.terminated]

    def play_counts(self) -> Dict[str, int]:
        """Play counts summed across live sessions."""
        totals: Dict[str, int] = {}
        for session in self.sessions():
            for track_id, count in session.play_count.items():
                totals[track_id] = totals.get(track_id, 0) + count
        return totals

    async def shutdown(self):
        """Tear every session down, keeping their saved queues."""
        for session in list(self._sessions.values()):
            await session.teardown(reason="shutdown", keep_snapshot=True)
        self._sessions.clear()
