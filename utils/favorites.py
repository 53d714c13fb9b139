"""
Favorite songs and personal playlists.
Every mutating call returns (ok, reason) so commands can echo the reason.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from database import Database
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Favorites'))

Result = Tuple[bool, Optional[str]]


class FavoritesManager:
    """Favorites and named playlists per user, with per-user limits."""

    def __init__(self, database: Database, max_playlists: int = 10, max_songs_per_playlist: int = 100):
        self.db = database
        self.max_playlists = max_playlists
        self.max_songs_per_playlist = max_songs_per_playlist

    # --- Favorites ---

    async def add_favorite(self, user_id: int, song: Dict[str, Any]) -> Result:
        if not await self.db.add_favorite(user_id, song):
            return False, "Already in favorites"
        return True, None

    async def remove_favorite(self, user_id: int, song_id: str) -> Result:
        if not await self.db.remove_favorite(user_id, song_id):
            return False, "Song not in favorites"
        return True, None

    async def get_favorites(self, user_id: int) -> List[Dict[str, Any]]:
        return await self.db.get_favorites(user_id)

    # --- Playlists ---

    async def create_playlist(self, user_id: int, name: str) -> Result:
        name = name.strip()
        if not name:
            return False, "Playlist name cannot be empty"
        if await self.db.count_user_playlists(user_id) >= self.max_playlists:
            return False, f"Maximum {self.max_playlists} playlists allowed"
        try:
            await self.db.create_user_playlist(user_id, name)
        except aiosqlite.IntegrityError:
            return False, "Playlist already exists"
        logger.info(f"User {user_id} created playlist '{name}'")
        return True, None

    async def delete_playlist(self, user_id: int, name: str) -> Result:
        playlist = await self.db.get_user_playlist(user_id, name)
        if not playlist:
            return False, "Playlist not found"
        await self.db.delete_user_playlist(playlist["id"])
        return True, None

    async def rename_playlist(self, user_id: int, old_name: str, new_name: str) -> Result:
        playlist = await self.db.get_user_playlist(user_id, old_name)
        if not playlist:
            return False, "Playlist not found"
        if await self.db.get_user_playlist(user_id, new_name):
            return False, "New name already exists"
        await self.db.rename_user_playlist(playlist["id"], new_name)
        return True, None

    async def add_to_playlist(self, user_id: int, name: str, song: Dict[str, Any]) -> Result:
        playlist = await self.db.get_user_playlist(user_id, name)
        if not playlist:
            return False, "Playlist not found"
        if len(playlist["songs"]) >= self.max_songs_per_playlist:
            return False, f"Maximum {self.max_songs_per_playlist} songs per playlist"
        if any(s["id"] == song["id"] for s in playlist["songs"]):
            return False, "Song already in playlist"
        await self.db.add_playlist_song(playlist["id"], song)
        return True, None

    async def remove_from_playlist(self, user_id: int, name: str, song_id: str) -> Result:
        playlist = await self.db.get_user_playlist(user_id, name)
        if not playlist:
            return False, "Playlist not found"
        if not await self.db.remove_playlist_song(playlist["id"], song_id):
            return False, "Song not in playlist"
        return True, None

    async def get_playlist(self, user_id: int, name: str) -> Optional[Dict[str, Any]]:
        return await self.db.get_user_playlist(user_id, name)

    async def get_playlists(self, user_id: int) -> List[Dict[str, Any]]:
        return await self.db.get_user_playlists(user_id)

    async def get_stats(self) -> Dict[str, int]:
        return await self.db.get_favorites_stats()
