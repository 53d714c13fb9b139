"""
Configuration loader for the Cadence music bot.
Loads settings from environment variables and freezes the playback knobs
into immutable settings objects handed to each component.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_ids(name: str) -> Tuple[int, ...]:
    """Parse a comma separated list of Discord ids."""
    raw = os.getenv(name, "")
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return tuple(ids)


class DuplicatePolicy(Enum):
    """What to do when a requested track is already queued."""
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


@dataclass(frozen=True)
class CacheSettings:
    enabled: bool = True
    directory: Path = Path("tmp")
    popular_threshold: int = 3
    max_size_bytes: int = 1000 * 1024 * 1024
    retention_days: float = 7
    target_ratio: float = 0.8


@dataclass(frozen=True)
class RateLimitSettings:
    enabled: bool = True
    commands_per_minute: int = 15
    # Per action class ceilings on top of the global one
    action_limits: Dict[str, int] = field(default_factory=lambda: {"play": 5})
    exempt_roles: Tuple[int, ...] = ()
    exempt_users: Tuple[int, ...] = ()
    window_seconds: float = 60
    sweep_interval_seconds: float = 300
    idle_seconds: float = 300


@dataclass(frozen=True)
class RadioSettings:
    enabled: bool = True
    queue_refill_at: int = 5
    fetch_count: int = 10


@dataclass(frozen=True)
class ReconnectSettings:
    enabled: bool = True
    attempts: int = 3
    delay_seconds: float = 5


@dataclass(frozen=True)
class EffectsSettings:
    enabled: bool = True
    available_effects: Tuple[str, ...] = (
        "nightcore", "bassboost", "8d", "vaporwave", "treble", "echo",
        "reverb", "chipmunk", "deepvoice", "distortion", "tremolo", "vibrato",
    )


@dataclass(frozen=True)
class PlaybackConfig:
    """Everything a playback session needs to know, fixed at startup."""
    max_queue_size: int = 100  # 0 = unlimited
    max_song_duration_seconds: int = 0  # 0 = unlimited
    max_file_size_bytes: int = 100 * 1024 * 1024
    max_retry_attempts: int = 3
    skip_age_restricted: bool = True
    skip_unavailable: bool = True
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.WARN
    history_enabled: bool = True
    history_max_entries: int = 50
    statistics_enabled: bool = True
    disconnect_on_empty_queue: bool = True
    post_play_delete_delay_seconds: float = 300
    preemptive_download_count: int = 2
    max_consecutive_skips: int = 5
    default_volume: int = 50  # 0 - 100
    user_volume_enabled: bool = True
    persistence_enabled: bool = True
    persistence_max_age_days: int = 7
    search_results_count: int = 5
    now_playing_update_seconds: float = 10  # 0 = never refresh
    cache: CacheSettings = field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    radio: RadioSettings = field(default_factory=RadioSettings)
    reconnect: ReconnectSettings = field(default_factory=ReconnectSettings)
    effects: EffectsSettings = field(default_factory=EffectsSettings)


class Config:
    """Bot configuration from environment variables."""

    # Discord
    DISCORD_TOKEN: str = os.getenv("DISCORD_TOKEN", "")
    BOT_PREFIX: str = os.getenv("BOT_PREFIX", "!")

    # Storage
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/cadence.db")
    TMP_FOLDER: str = os.getenv("TMP_FOLDER", "tmp")
    AUTO_CLEANUP_TMP_ON_START: bool = _env_bool("AUTO_CLEANUP_TMP_ON_START", False)

    # Logging
    LOG_FILE: str = os.getenv("LOG_FILE", "data/cadence.log")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # YouTube / yt-dlp authentication
    YTDL_COOKIES_PATH: Optional[str] = os.getenv("YTDL_COOKIES_PATH")
    YTDL_PO_TOKEN: Optional[str] = os.getenv("YTDL_PO_TOKEN")

    # Spotify
    SPOTIFY_CLIENT_ID: Optional[str] = os.getenv("SPOTIFY_CLIENT_ID")
    SPOTIFY_CLIENT_SECRET: Optional[str] = os.getenv("SPOTIFY_CLIENT_SECRET")

    # Spotify HTTP behavior (Spotipy)
    # Note: SPOTIFY_REQUEST_TIMEOUT can be a single float (seconds) or a "connect,read" tuple, e.g. "3,15".
    SPOTIFY_REQUEST_TIMEOUT: str = os.getenv("SPOTIFY_REQUEST_TIMEOUT", "10")
    SPOTIFY_RETRIES: int = int(os.getenv("SPOTIFY_RETRIES", "3"))
    SPOTIFY_STATUS_RETRIES: int = int(os.getenv("SPOTIFY_STATUS_RETRIES", "3"))
    SPOTIFY_BACKOFF_FACTOR: float = float(os.getenv("SPOTIFY_BACKOFF_FACTOR", "0.3"))
    SPOTIFY_STATUS_FORCELIST: str = os.getenv("SPOTIFY_STATUS_FORCELIST", "429,500,502,503,504")
    SPOTIFY_MAX_TRACKS: int = int(os.getenv("SPOTIFY_MAX_TRACKS", "50"))

    # Access control
    BLACKLISTED_ROLES: Tuple[int, ...] = _env_ids("BLACKLISTED_ROLES")
    BLACKLISTED_USERS: Tuple[int, ...] = _env_ids("BLACKLISTED_USERS")

    # Queue / playback
    MAX_QUEUE_SIZE: int = int(os.getenv("MAX_QUEUE_SIZE", "100"))
    MAX_SONG_DURATION_MINUTES: int = int(os.getenv("MAX_SONG_DURATION_MINUTES", "0"))
    MAX_FILE_SIZE_MB: int = int(os.getenv("MAX_FILE_SIZE_MB", "100"))
    MAX_RETRY_ATTEMPTS: int = int(os.getenv("MAX_RETRY_ATTEMPTS", "3"))
    SKIP_AGE_RESTRICTED: bool = _env_bool("SKIP_AGE_RESTRICTED", True)
    SKIP_UNAVAILABLE: bool = _env_bool("SKIP_UNAVAILABLE", True)
    DUPLICATE_POLICY: str = os.getenv("DUPLICATE_POLICY", "warn")
    HISTORY_ENABLED: bool = _env_bool("HISTORY_ENABLED", True)
    HISTORY_MAX_ENTRIES: int = int(os.getenv("HISTORY_MAX_ENTRIES", "50"))
    STATISTICS_ENABLED: bool = _env_bool("STATISTICS_ENABLED", True)
    DISCONNECT_ON_EMPTY_QUEUE: bool = _env_bool("DISCONNECT_ON_EMPTY_QUEUE", True)
    POST_PLAY_DELETE_DELAY_MINUTES: float = float(os.getenv("POST_PLAY_DELETE_DELAY_MINUTES", "5"))
    PREEMPTIVE_DOWNLOAD_COUNT: int = int(os.getenv("PREEMPTIVE_DOWNLOAD_COUNT", "2"))
    MAX_CONSECUTIVE_SKIPS: int = int(os.getenv("MAX_CONSECUTIVE_SKIPS", "5"))
    DEFAULT_VOLUME: int = int(os.getenv("DEFAULT_VOLUME", "50"))  # 0 - 100
    USER_VOLUME_ENABLED: bool = _env_bool("USER_VOLUME_ENABLED", True)
    SEARCH_RESULTS_COUNT: int = int(os.getenv("SEARCH_RESULTS_COUNT", "5"))

    # Now playing message
    RICH_NOW_PLAYING_ENABLED: bool = _env_bool("RICH_NOW_PLAYING_ENABLED", True)
    RICH_NOW_PLAYING_UPDATE_SECONDS: float = float(os.getenv("RICH_NOW_PLAYING_UPDATE_SECONDS", "10"))

    # Seeking
    SEEK_ENABLED: bool = _env_bool("SEEK_ENABLED", True)
    SEEK_ADMIN_ONLY: bool = _env_bool("SEEK_ADMIN_ONLY", False)

    # Queue persistence
    QUEUE_PERSISTENCE_ENABLED: bool = _env_bool("QUEUE_PERSISTENCE_ENABLED", True)
    QUEUE_PERSISTENCE_MAX_AGE_DAYS: int = int(os.getenv("QUEUE_PERSISTENCE_MAX_AGE_DAYS", "7"))

    # Smart cache
    SMART_CACHE_ENABLED: bool = _env_bool("SMART_CACHE_ENABLED", True)
    SMART_CACHE_POPULAR_THRESHOLD: int = int(os.getenv("SMART_CACHE_POPULAR_THRESHOLD", "3"))
    SMART_CACHE_MAX_SIZE_MB: int = int(os.getenv("SMART_CACHE_MAX_SIZE_MB", "1000"))

    # Rate limiting
    RATE_LIMITING_ENABLED: bool = _env_bool("RATE_LIMITING_ENABLED", True)
    RATE_LIMIT_COMMANDS_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_COMMANDS_PER_MINUTE", "15"))
    RATE_LIMIT_PLAY_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PLAY_PER_MINUTE", "5"))
    RATE_LIMIT_EXEMPT_ROLES: Tuple[int, ...] = _env_ids("RATE_LIMIT_EXEMPT_ROLES")
    RATE_LIMIT_EXEMPT_USERS: Tuple[int, ...] = _env_ids("RATE_LIMIT_EXEMPT_USERS")

    # Radio
    RADIO_ENABLED: bool = _env_bool("RADIO_ENABLED", True)
    RADIO_QUEUE_REFILL_AT: int = int(os.getenv("RADIO_QUEUE_REFILL_AT", "5"))
    RADIO_FETCH_COUNT: int = int(os.getenv("RADIO_FETCH_COUNT", "10"))

    # Voice reconnection
    AUTO_RECONNECT_ENABLED: bool = _env_bool("AUTO_RECONNECT_ENABLED", True)
    AUTO_RECONNECT_ATTEMPTS: int = int(os.getenv("AUTO_RECONNECT_ATTEMPTS", "3"))
    AUTO_RECONNECT_DELAY_SECONDS: float = float(os.getenv("AUTO_RECONNECT_DELAY_SECONDS", "5"))

    # Audio effects / favorites
    AUDIO_EFFECTS_ENABLED: bool = _env_bool("AUDIO_EFFECTS_ENABLED", True)
    FAVORITES_MAX_PLAYLISTS: int = int(os.getenv("FAVORITES_MAX_PLAYLISTS", "10"))
    FAVORITES_MAX_SONGS_PER_PLAYLIST: int = int(os.getenv("FAVORITES_MAX_SONGS_PER_PLAYLIST", "100"))

    # Theme Colors
    COLOR_PRIMARY: int = 0x5865F2
    COLOR_SUCCESS: int = 0x57F287
    COLOR_ERROR: int = 0xED4245
    COLOR_WARNING: int = 0xFEE75C
    COLOR_INFO: int = 0x3498DB

    # yt-dlp options
    YTDL_FORMAT_OPTIONS = {
        'format': 'bestaudio/best',
        'noplaylist': True,
        'nocheckcertificate': True,
        'ignoreerrors': False,
        'logtostderr': False,
        'quiet': True,
        'no_warnings': True,
        'default_search': 'ytsearch',
        'source_address': '0.0.0.0',
    }

    # FFmpeg options for local files (effects append an -af chain)
    FFMPEG_OPTIONS = {
        'before_options': '-nostdin',
        'options': '-vn',
    }

    @classmethod
    def ffmpeg_options(cls, start: float = 0, audio_filter: Optional[str] = None) -> Dict[str, str]:
        """FFmpeg options, optionally starting `start` seconds in and with an -af chain."""
        before = cls.FFMPEG_OPTIONS['before_options']
        if start > 0:
            before = f"{before} -ss {start:g}"
        options = cls.FFMPEG_OPTIONS['options']
        if audio_filter:
            options = f'{options} -af "{audio_filter}"'
        return {'before_options': before, 'options': options}

    @classmethod
    def playback_config(cls) -> PlaybackConfig:
        """Freeze the environment-driven knobs into a PlaybackConfig."""
        try:
            duplicate_policy = DuplicatePolicy(cls.DUPLICATE_POLICY.strip().lower())
        except ValueError:
            duplicate_policy = DuplicatePolicy.WARN

        return PlaybackConfig(
            max_queue_size=cls.MAX_QUEUE_SIZE,
            max_song_duration_seconds=cls.MAX_SONG_DURATION_MINUTES * 60,
            max_file_size_bytes=cls.MAX_FILE_SIZE_MB * 1024 * 1024,
            max_retry_attempts=cls.MAX_RETRY_ATTEMPTS,
            skip_age_restricted=cls.SKIP_AGE_RESTRICTED,
            skip_unavailable=cls.SKIP_UNAVAILABLE,
            duplicate_policy=duplicate_policy,
            history_enabled=cls.HISTORY_ENABLED,
            history_max_entries=cls.HISTORY_MAX_ENTRIES,
            statistics_enabled=cls.STATISTICS_ENABLED,
            disconnect_on_empty_queue=cls.DISCONNECT_ON_EMPTY_QUEUE,
            post_play_delete_delay_seconds=cls.POST_PLAY_DELETE_DELAY_MINUTES * 60,
            preemptive_download_count=cls.PREEMPTIVE_DOWNLOAD_COUNT,
            max_consecutive_skips=cls.MAX_CONSECUTIVE_SKIPS,
            default_volume=cls.DEFAULT_VOLUME,
            user_volume_enabled=cls.USER_VOLUME_ENABLED,
            persistence_enabled=cls.QUEUE_PERSISTENCE_ENABLED,
            persistence_max_age_days=cls.QUEUE_PERSISTENCE_MAX_AGE_DAYS,
            search_results_count=cls.SEARCH_RESULTS_COUNT,
            now_playing_update_seconds=cls.RICH_NOW_PLAYING_UPDATE_SECONDS if cls.RICH_NOW_PLAYING_ENABLED else 0,
            cache=CacheSettings(
                enabled=cls.SMART_CACHE_ENABLED,
                directory=Path(cls.TMP_FOLDER),
                popular_threshold=cls.SMART_CACHE_POPULAR_THRESHOLD,
                max_size_bytes=cls.SMART_CACHE_MAX_SIZE_MB * 1024 * 1024,
            ),
            rate_limit=RateLimitSettings(
                enabled=cls.RATE_LIMITING_ENABLED,
                commands_per_minute=cls.RATE_LIMIT_COMMANDS_PER_MINUTE,
                action_limits={"play": cls.RATE_LIMIT_PLAY_PER_MINUTE},
                exempt_roles=cls.RATE_LIMIT_EXEMPT_ROLES,
                exempt_users=cls.RATE_LIMIT_EXEMPT_USERS,
            ),
            radio=RadioSettings(
                enabled=cls.RADIO_ENABLED,
                queue_refill_at=cls.RADIO_QUEUE_REFILL_AT,
                fetch_count=cls.RADIO_FETCH_COUNT,
            ),
            reconnect=ReconnectSettings(
                enabled=cls.AUTO_RECONNECT_ENABLED,
                attempts=cls.AUTO_RECONNECT_ATTEMPTS,
                delay_seconds=cls.AUTO_RECONNECT_DELAY_SECONDS,
            ),
            effects=EffectsSettings(enabled=cls.AUDIO_EFFECTS_ENABLED),
        )

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration."""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required! Set it in your .env file.")
        return True
