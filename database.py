import aiosqlite
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Database'))


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async database wrapper for Cadence."""

    def __init__(self, db_path: str = "data/cadence.db"):
        self.db_path = db_path

    async def initialize(self):
        """Initialize the database schema with light migrations."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            # 1. Saved session snapshots (crash recovery)
            await db.execute('''
                CREATE TABLE IF NOT EXISTS saved_queues (
                    guild_id INTEGER PRIMARY KEY,
                    state TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )
            ''')

            # 2. Playback History
            await db.execute('''
                CREATE TABLE IF NOT EXISTS playback_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    guild_id INTEGER,
                    track_id TEXT,
                    title TEXT,
                    url TEXT,
                    duration INTEGER,
                    requester TEXT,
                    user_requesting INTEGER,
                    timestamp TEXT
                )
            ''')
            await db.execute('''
                CREATE INDEX IF NOT EXISTS idx_playback_history_guild
                ON playback_history(guild_id)
            ''')

            # 3. Play counts
            await db.execute('''
                CREATE TABLE IF NOT EXISTS play_statistics (
                    guild_id INTEGER,
                    track_id TEXT,
                    title TEXT,
                    play_count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (guild_id, track_id)
                )
            ''')

            # 4. Per-user preferences
            await db.execute('''
                CREATE TABLE IF NOT EXISTS volume_preferences (
                    user_id INTEGER PRIMARY KEY,
                    volume INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')
            await db.execute('''
                CREATE TABLE IF NOT EXISTS effect_preferences (
                    user_id INTEGER PRIMARY KEY,
                    effect_id TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')

            # 5. Favorites and personal playlists
            await db.execute('''
                CREATE TABLE IF NOT EXISTS favorites (
                    user_id INTEGER,
                    track_id TEXT,
                    title TEXT,
                    url TEXT,
                    duration INTEGER,
                    added_at TEXT,
                    PRIMARY KEY (user_id, track_id)
                )
            ''')
            await db.execute('''
                CREATE TABLE IF NOT EXISTS user_playlists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE (user_id, name)
                )
            ''')
            await db.execute('''
                CREATE TABLE IF NOT EXISTS user_playlist_songs (
                    playlist_id INTEGER,
                    track_id TEXT,
                    title TEXT,
                    url TEXT,
                    duration INTEGER,
                    position INTEGER,
                    added_at TEXT,
                    PRIMARY KEY (playlist_id, track_id)
                )
            ''')

            # --- Migration: add columns that older databases lack ---
            tables = {
                "playback_history": ["track_id", "title", "url", "duration", "requester", "user_requesting", "timestamp"],
                "favorites": ["title", "url", "duration", "added_at"],
            }
            for table, expected_cols in tables.items():
                async with db.execute(f"PRAGMA table_info({table})") as cursor:
                    existing_cols = {row[1] for row in await cursor.fetchall()}
                for col in expected_cols:
                    if col not in existing_cols:
                        await db.execute(f"ALTER TABLE {table} ADD COLUMN {col} TEXT")
                        logger.info(f"Migration: Added missing column '{col}' to table '{table}'.")

            await db.commit()
            logger.info("Database initialized and migrated to latest schema.")

    # --- Saved queues ---

    async def save_queue_state(self, guild_id: int, state: Dict[str, Any], saved_at: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('''
                INSERT INTO saved_queues (guild_id, state, saved_at)
                VALUES (?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    state = excluded.state,
                    saved_at = excluded.saved_at
            ''', (guild_id, json.dumps(state), saved_at))
            await db.commit()

    async def load_queue_state(self, guild_id: int) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                'SELECT state, saved_at FROM saved_queues WHERE guild_id = ?', (guild_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        state = json.loads(row[0])
        state["saved_at"] = row[1]
        return state

    async def delete_queue_state(self, guild_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('DELETE FROM saved_queues WHERE guild_id = ?', (guild_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def get_all_queue_states(self) -> Dict[int, Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute('SELECT guild_id, state, saved_at FROM saved_queues') as cursor:
                rows = await cursor.fetchall()
        states = {}
        for guild_id, raw, saved_at in rows:
            state = json.loads(raw)
            state["saved_at"] = saved_at
            states[guild_id] = state
        return states

    async def delete_queue_states_before(self, cutoff: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('DELETE FROM saved_queues WHERE saved_at < ?', (cutoff,))
            await db.commit()
            return cursor.rowcount

    async def clear_queue_states(self):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('DELETE FROM saved_queues')
            await db.commit()

    # --- History and statistics ---

    async def add_to_history(self, guild_id: int, track_id: str, title: str, url: str,
                             duration: int = 0, requester: str = "Unknown", user_id: Optional[int] = None):
        """Record a played track in history."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('''
                INSERT INTO playback_history (guild_id, track_id, title, url, duration, requester, user_requesting, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (guild_id, track_id, title, url, duration, requester, user_id, _utcnow()))
            await db.commit()

    async def get_history(self, guild_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute('''
                SELECT * FROM playback_history
                WHERE guild_id = ?
                ORDER BY id DESC
                LIMIT ?
            ''', (guild_id, limit)) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def increment_play_count(self, guild_id: int, track_id: str, title: str = ""):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('''
                INSERT INTO play_statistics (guild_id, track_id, title, play_count)
                VALUES (?, ?, ?, 1)
                ON CONFLICT(guild_id, track_id) DO UPDATE SET
                    play_count = play_count + 1,
                    title = excluded.title
            ''', (guild_id, track_id, title))
            await db.commit()

    async def get_play_counts(self, guild_id: Optional[int] = None) -> Dict[str, int]:
        """Play counts per track id, for one guild or summed across all guilds."""
        async with aiosqlite.connect(self.db_path) as db:
            if guild_id is None:
                query = 'SELECT track_id, SUM(play_count) FROM play_statistics GROUP BY track_id'
                params = ()
            else:
                query = 'SELECT track_id, play_count FROM play_statistics WHERE guild_id = ?'
                params = (guild_id,)
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return {row[0]: int(row[1]) for row in rows}

    async def get_top_tracks(self, guild_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute('''
                SELECT track_id, title, play_count FROM play_statistics
                WHERE guild_id = ?
                ORDER BY play_count DESC
                LIMIT ?
            ''', (guild_id, limit)) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def clear_guild_statistics(self, guild_id: int):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('DELETE FROM play_statistics WHERE guild_id = ?', (guild_id,))
            await db.execute('DELETE FROM playback_history WHERE guild_id = ?', (guild_id,))
            await db.commit()

    # --- Volume / effect preferences ---

    async def get_volume_preference(self, user_id: int) -> Optional[int]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute('SELECT volume FROM volume_preferences WHERE user_id = ?', (user_id,)) as cursor:
                row = await cursor.fetchone()
                return int(row[0]) if row else None

    async def set_volume_preference(self, user_id: int, volume: int):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('''
                INSERT INTO volume_preferences (user_id, volume, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    volume = excluded.volume,
                    updated_at = excluded.updated_at
            ''', (user_id, volume, _utcnow()))
            await db.commit()

    async def delete_volume_preference(self, user_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('DELETE FROM volume_preferences WHERE user_id = ?', (user_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def get_volume_preferences(self) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute('SELECT * FROM volume_preferences') as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def delete_volume_preferences_before(self, cutoff: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('DELETE FROM volume_preferences WHERE updated_at < ?', (cutoff,))
            await db.commit()
            return cursor.rowcount

    async def get_effect_preference(self, user_id: int) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute('SELECT effect_id FROM effect_preferences WHERE user_id = ?', (user_id,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def set_effect_preference(self, user_id: int, effect_id: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('''
                INSERT INTO effect_preferences (user_id, effect_id, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    effect_id = excluded.effect_id,
                    updated_at = excluded.updated_at
            ''', (user_id, effect_id, _utcnow()))
            await db.commit()

    async def delete_effect_preference(self, user_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('DELETE FROM effect_preferences WHERE user_id = ?', (user_id,))
            await db.commit()
            return cursor.rowcount > 0

    # --- Favorites ---

    async def add_favorite(self, user_id: int, track: Dict[str, Any]) -> bool:
        """Insert a favorite; False when it was already there."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('''
                INSERT OR IGNORE INTO favorites (user_id, track_id, title, url, duration, added_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (user_id, track['id'], track.get('title'), track.get('url'), track.get('duration', 0), _utcnow()))
            await db.commit()
            return cursor.rowcount > 0

    async def remove_favorite(self, user_id: int, track_id: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                'DELETE FROM favorites WHERE user_id = ? AND track_id = ?', (user_id, track_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def get_favorites(self, user_id: int) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute('''
                SELECT track_id AS id, title, url, duration, added_at FROM favorites
                WHERE user_id = ?
                ORDER BY added_at ASC
            ''', (user_id,)) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    # --- Personal playlists ---

    async def create_user_playlist(self, user_id: int, name: str) -> int:
        now = _utcnow()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute('''
                INSERT INTO user_playlists (user_id, name, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            ''', (user_id, name, now, now))
            await db.commit()
            return cursor.lastrowid

    async def get_user_playlist(self, user_id: int, name: str) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                'SELECT * FROM user_playlists WHERE user_id = ? AND name = ?', (user_id, name)
            ) as cursor:
                row = await cursor.fetchone()
                if not row:
                    return None
                playlist = dict(row)
            async with db.execute('''
                SELECT track_id AS id, title, url, duration, added_at FROM user_playlist_songs
                WHERE playlist_id = ?
                ORDER BY position ASC
            ''', (playlist['id'],)) as cursor:
                playlist['songs'] = [dict(r) for r in await cursor.fetchall()]
            return playlist

    async def get_user_playlists(self, user_id: int) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute('''
                SELECT p.*, COUNT(s.track_id) AS song_count
                FROM user_playlists p
                LEFT JOIN user_playlist_songs s ON s.playlist_id = p.id
                WHERE p.user_id = ?
                GROUP BY p.id
                ORDER BY p.created_at ASC
            ''', (user_id,)) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def count_user_playlists(self, user_id: int) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute('SELECT COUNT(*) FROM user_playlists WHERE user_id = ?', (user_id,)) as cursor:
                row = await cursor.fetchone()
                return int(row[0])

    async def delete_user_playlist(self, playlist_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute('DELETE FROM user_playlist_songs WHERE playlist_id = ?', (playlist_id,))
            cursor = await db.execute('DELETE FROM user_playlists WHERE id = ?', (playlist_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def rename_user_playlist(self, playlist_id: int, new_name: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                'UPDATE user_playlists SET name = ?, updated_at = ? WHERE id = ?',
                (new_name, _utcnow(), playlist_id)
            )
            await db.commit()

    async def add_playlist_song(self, playlist_id: int, track: Dict[str, Any]) -> bool:
        now = _utcnow()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                'SELECT COALESCE(MAX(position), -1) + 1 FROM user_playlist_songs WHERE playlist_id = ?',
                (playlist_id,)
            ) as cursor:
                position = (await cursor.fetchone())[0]
            cursor = await db.execute('''
                INSERT OR IGNORE INTO user_playlist_songs (playlist_id, track_id, title, url, duration, position, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', (playlist_id, track['id'], track.get('title'), track.get('url'), track.get('duration', 0), position, now))
            await db.execute('UPDATE user_playlists SET updated_at = ? WHERE id = ?', (now, playlist_id))
            await db.commit()
            return cursor.rowcount > 0

    async def remove_playlist_song(self, playlist_id: int, track_id: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                'DELETE FROM user_playlist_songs WHERE playlist_id = ? AND track_id = ?',
                (playlist_id, track_id)
            )
            await db.execute('UPDATE user_playlists SET updated_at = ? WHERE id = ?', (_utcnow(), playlist_id))
            await db.commit()
            return cursor.rowcount > 0

    async def get_favorites_stats(self) -> Dict[str, int]:
        async with aiosqlite.connect(self.db_path) as db:
            stats = {}
            for key, query in (
                ("total_favorites", 'SELECT COUNT(*) FROM favorites'),
                ("total_playlists", 'SELECT COUNT(*) FROM user_playlists'),
                ("total_songs", 'SELECT COUNT(*) FROM user_playlist_songs'),
                ("total_users", '''
                    SELECT COUNT(*) FROM (
                        SELECT user_id FROM favorites UNION SELECT user_id FROM user_playlists
                    )
                '''),
            ):
                async with db.execute(query) as cursor:
                    stats[key] = int((await cursor.fetchone())[0])
            return stats
