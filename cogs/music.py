"""
Music Cog - slash commands on top of the playback sessions.
Queue management, radio, effects, favorites and personal playlists.
"""
import discord
from discord import app_commands
from discord.ext import commands, tasks
import asyncio
from typing import Dict, List, Optional, Set, Tuple
import logging

from config import Config
from database import Database
from player.errors import MusicError, SessionTerminated
from player.models import EventKind, HistoryEntry, QueueEntry, SessionEvent
from player.registry import SessionRegistry
from player.session import PlaybackSession
from player.transport import VoiceTransport
from utils.cache import CacheManager
from utils.effects import EFFECTS, AudioEffects
from utils.embeds import (
    create_added_to_queue_embed,
    create_error_embed,
    create_event_embed,
    create_favorites_embed,
    create_history_embed,
    create_info_embed,
    create_now_playing_embed,
    create_playlist_added_embed,
    create_queue_embed,
    create_status_embed,
    create_success_embed,
    describe_error,
    format_duration,
    format_size,
    parse_timestamp,
)
from utils.favorites import FavoritesManager
from utils.logger import set_logger
from utils.persistence import QueuePersistence
from utils.preferences import EffectPreferences, VolumePreferences
from utils.radio import RadioMode
from utils.rate_limit import RateLimiter
from utils.youtube import YouTubeFetcher, YouTubeResolver

logger = set_logger(logging.getLogger('Cadence.Music'))

# Commands counted against the "play" rate limit class
PLAY_COMMANDS = {"play", "playlist play", "restorequeue", "radio start"}

EFFECT_CHOICES = [app_commands.Choice(name="None", value="none")] + [
    app_commands.Choice(name=effect.name, value=effect.id) for effect in EFFECTS.values()
]


class ChannelNotifier:
    """
    Posts session events to the text channel a session was started from.

    The last now-playing message is remembered so status updates can edit
    it in place instead of posting new messages.
    """

    def __init__(self, bot: commands.Bot, channel_id: Optional[int]):
        self.bot = bot
        self.channel_id = channel_id
        self._pending: Set[asyncio.Task] = set()
        self._now_playing: Optional[Tuple[QueueEntry, discord.Message]] = None

    def __call__(self, event: SessionEvent):
        if event.kind is EventKind.STATUS_UPDATE:
            self._spawn(self._refresh(event))
            return
        embed = create_event_embed(event)
        if embed is None or self.channel_id is None:
            return
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            return
        self._spawn(self._send(channel, embed, event))

    def _spawn(self, coro):
        # Sessions never wait on Discord
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, channel, embed: discord.Embed, event: SessionEvent):
        try:
            message = await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.warning(f"Could not post {event.kind.value} in guild {event.guild_id}: {e}")
            return
        if event.kind is EventKind.NOW_PLAYING:
            self._now_playing = (event.entry, message)

    async def _refresh(self, event: SessionEvent):
        current = self._now_playing
        if current is None or current[0] is not event.entry:
            return
        try:
            await current[1].edit(embed=create_status_embed(event))
        except discord.HTTPException as e:
            # Deleted or no longer editable; stop refreshing it
            logger.debug(f"Could not refresh now playing in guild {event.guild_id}: {e}")
            self._now_playing = None


def _song_dict(entry: QueueEntry) -> Dict[str, object]:
    return {"id": entry.id, "title": entry.title, "url": entry.source_url, "duration": entry.duration}


class Music(commands.Cog):
    """Music commands cog."""

    radio_group = app_commands.Group(name="radio", description="Endless playback of related songs")
    effect_group = app_commands.Group(name="effect", description="Audio effects")
    favorite_group = app_commands.Group(name="favorite", description="Your favorite songs")
    playlist_group = app_commands.Group(name="playlist", description="Your personal playlists")

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.settings = Config.playback_config()
        self.db = Database(Config.DATABASE_PATH)
        self.cache = CacheManager(self.settings.cache)
        self.persistence = QueuePersistence(self.db, enabled=self.settings.persistence_enabled)
        self.volume_prefs = VolumePreferences(self.db, default_volume=self.settings.default_volume)
        self.effects = AudioEffects(self.settings.effects, EffectPreferences(self.db))
        self.favorites = FavoritesManager(
            self.db,
            max_playlists=Config.FAVORITES_MAX_PLAYLISTS,
            max_songs_per_playlist=Config.FAVORITES_MAX_SONGS_PER_PLAYLIST,
        )
        self.resolver = YouTubeResolver()
        self.fetcher = YouTubeFetcher(max_file_size_bytes=self.settings.max_file_size_bytes)
        self.radio = RadioMode(self.settings.radio, self.resolver)
        self.rate_limiter = RateLimiter(self.settings.rate_limit)
        self.registry = SessionRegistry(self._create_session)
        logger.info("Cadence Music Cog Initialized (Sync).")

    async def cog_load(self):
        """Called when the cog is loaded."""
        await self.db.initialize()

        if Config.AUTO_CLEANUP_TMP_ON_START:
            removed = self.cache.clear_all()
            logger.info(f"Startup cleanup removed {removed} cached file(s)")
        if self.settings.persistence_enabled:
            await self.persistence.cleanup_old(self.settings.persistence_max_age_days)
        await self.volume_prefs.cleanup_old()

        self.rate_limiter.start()
        self.cache_maintenance.start()
        logger.info("Cadence Music Cog Ready (Async).")

    async def cog_unload(self):
        self.cache_maintenance.cancel()
        self.rate_limiter.stop()
        await self.registry.shutdown()

    def _create_session(self, guild_id: int, registry: SessionRegistry, *,
                        voice_channel: discord.VoiceChannel, text_channel_id: Optional[int]) -> PlaybackSession:
        return PlaybackSession(
            guild_id,
            self.settings,
            transport=VoiceTransport(voice_channel),
            resolver=self.resolver,
            fetcher=self.fetcher,
            cache=self.cache,
            effects=self.effects,
            persistence=self.persistence,
            sink=ChannelNotifier(self.bot, text_channel_id),
            registry=registry,
            radio=self.radio,
            statistics=self.db if self.settings.statistics_enabled else None,
            volume_prefs=self.volume_prefs,
            voice_channel_id=voice_channel.id,
            text_channel_id=text_channel_id,
        )

    async def play_counts(self) -> Dict[str, int]:
        """Play counts used to decide which cached files are popular."""
        if self.settings.statistics_enabled:
            return await self.db.get_play_counts()
        return self.registry.play_counts()

    @tasks.loop(hours=1)
    async def cache_maintenance(self):
        """Hourly cache eviction."""
        if not self.cache.enabled:
            return
        counts = await self.play_counts()
        result = await self.bot.loop.run_in_executor(None, self.cache.clean, counts)
        logger.info(
            f"Cache maintenance: {result.deleted} deleted, {result.kept_popular} popular kept, "
            f"{format_size(result.freed_bytes)} freed"
        )

    @cache_maintenance.before_loop
    async def before_cache_maintenance(self):
        await self.bot.wait_until_ready()

    # --- Access control ---

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Blacklist and rate limit every command in this cog."""
        user = interaction.user
        role_ids = [role.id for role in getattr(user, "roles", [])]

        if user.id in Config.BLACKLISTED_USERS or any(r in Config.BLACKLISTED_ROLES for r in role_ids):
            logger.info(f"Blocked blacklisted user {user} ({user.id})")
            await interaction.response.send_message(
                embed=create_error_embed("You are not allowed to use this bot."),
                ephemeral=True
            )
            return False

        name = interaction.command.qualified_name if interaction.command else ""
        action = "play" if name in PLAY_COMMANDS else "command"
        result = self.rate_limiter.check(user.id, action, role_ids)
        if not result.allowed:
            await interaction.response.send_message(
                embed=create_error_embed(f"{result.reason} Try again in {max(1, round(result.retry_after))}s."),
                ephemeral=True
            )
            return False
        return True

    # --- Helpers ---

    async def _reply(self, interaction: discord.Interaction, embed: discord.Embed, ephemeral: bool = False):
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=ephemeral)

    async def join_session(self, interaction: discord.Interaction) -> Optional[PlaybackSession]:
        """Session for the caller's voice channel, created on first use."""
        if not interaction.guild:
            await self._reply(interaction, create_error_embed("This command can only be used in a server!"), True)
            return None

        member = interaction.user
        if not isinstance(member, discord.Member) or not member.voice or not member.voice.channel:
            await self._reply(interaction, create_error_embed("You must be in a voice channel!"), True)
            return None

        channel = member.voice.channel
        session = self.registry.get(interaction.guild.id)
        if session is not None and session.voice_channel_id != channel.id:
            if session.transport.is_connected:
                await self._reply(interaction, create_error_embed("You must be in the same voice channel as the bot!"), True)
                return None
            session.transport.channel = channel
            session.voice_channel_id = channel.id

        if session is None:
            session = self.registry.get_or_create(
                interaction.guild.id,
                voice_channel=channel,
                text_channel_id=interaction.channel_id,
            )
        return session

    async def active_session(self, interaction: discord.Interaction) -> Optional[PlaybackSession]:
        session = self.registry.get(interaction.guild.id) if interaction.guild else None
        if session is None:
            await self._reply(interaction, create_error_embed("Not playing anything!"), True)
        return session

    async def _enqueue(self, interaction: discord.Interaction, session: PlaybackSession,
                       query: str) -> Optional[List[QueueEntry]]:
        try:
            return await session.enqueue(query, interaction.user.display_name, interaction.user.id)
        except SessionTerminated:
            await self._reply(interaction, create_error_embed(
                "The player was stopped while your request was loading. Please try again."))
        except MusicError as e:
            await self._reply(interaction, create_error_embed(describe_error(e)))
        return None

    # --- Playback ---

    @app_commands.command(name="play", description="Play a song, playlist or Spotify link")
    @app_commands.describe(query="Song name, YouTube URL, playlist URL or Spotify link")
    async def play(self, interaction: discord.Interaction, query: str):
        """Play a song or playlist."""
        session = await self.join_session(interaction)
        if not session:
            return

        await interaction.response.defer()
        added = await self._enqueue(interaction, session, query)
        if not added:
            return

        if len(added) > 1:
            await interaction.followup.send(embed=create_playlist_added_embed(added))
            return

        entry = added[0]
        position = next((i for i, e in enumerate(session.queue, start=1) if e is entry), None)
        if position is None:
            await interaction.followup.send(
                embed=create_info_embed("Starting", f"🎶 **{entry.title}** is up next.")
            )
        else:
            await interaction.followup.send(embed=create_added_to_queue_embed(entry, position))

    @app_commands.command(name="skip", description="Skip the current song")
    async def skip(self, interaction: discord.Interaction):
        """Skip the current track."""
        session = await self.active_session(interaction)
        if not session:
            return
        entry = session.skip()
        if entry is None:
            await self._reply(interaction, create_error_embed("Nothing is playing!"), True)
            return
        await self._reply(interaction, create_success_embed(f"⏭️ Skipped: **{entry.title}**"))

    @app_commands.command(name="pause", description="Pause the current song")
    async def pause(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        if session.is_paused:
            await self._reply(interaction, create_info_embed("Already Paused", "Use `/resume` to continue."), True)
        elif session.pause():
            await self._reply(interaction, create_success_embed("⏸️ Paused the music."))
        else:
            await self._reply(interaction, create_error_embed("Nothing is playing!"), True)

    @app_commands.command(name="resume", description="Resume the paused song")
    async def resume(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        if session.resume():
            await self._reply(interaction, create_success_embed("▶️ Resumed the music."))
        else:
            await self._reply(interaction, create_info_embed("Not Paused", "The player is not paused."), True)

    @app_commands.command(name="stop", description="Stop playing, clear the queue and leave")
    async def stop(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        await interaction.response.defer()
        await session.stop()
        await interaction.followup.send(
            embed=create_success_embed("⏹️ Stopped the music and cleared the queue.")
        )

    @app_commands.command(name="queue", description="View the music queue")
    @app_commands.describe(page="Page number to view")
    async def queue(self, interaction: discord.Interaction, page: int = 1):
        session = self.registry.get(interaction.guild.id) if interaction.guild else None
        if session is None:
            await self._reply(interaction, create_queue_embed([], None), True)
            return
        await self._reply(interaction, create_queue_embed(session.queue, session.now_playing, page))

    @app_commands.command(name="nowplaying", description="Show the currently playing song")
    async def nowplaying(self, interaction: discord.Interaction):
        session = self.registry.get(interaction.guild.id) if interaction.guild else None
        if session is None or session.now_playing is None:
            await self._reply(interaction, create_info_embed("Nothing Playing", "Use `/play <song>` to start listening!"), True)
            return
        await self._reply(interaction, create_now_playing_embed(session.now_playing, session))

    @app_commands.command(name="seek", description="Jump to a position in the current song")
    @app_commands.describe(time="Position as seconds, MM:SS or HH:MM:SS")
    async def seek(self, interaction: discord.Interaction, time: str):
        if not Config.SEEK_ENABLED:
            await self._reply(interaction, create_error_embed("Seeking is disabled."), True)
            return
        member = interaction.user
        if Config.SEEK_ADMIN_ONLY and not (isinstance(member, discord.Member) and member.guild_permissions.administrator):
            await self._reply(interaction, create_error_embed("Only admins can use the seek command."), True)
            return

        session = await self.active_session(interaction)
        if not session:
            return
        entry = session.now_playing
        if entry is None:
            await self._reply(interaction, create_error_embed("Nothing is playing!"), True)
            return

        seconds = parse_timestamp(time)
        if seconds is None:
            await self._reply(interaction, create_error_embed("Use seconds, `MM:SS` or `HH:MM:SS`."), True)
            return
        if seconds > entry.duration:
            await self._reply(interaction, create_error_embed(
                f"**{entry.title}** is only {format_duration(entry.duration)} long."), True)
            return

        await interaction.response.defer()
        if await session.seek(seconds):
            await interaction.followup.send(embed=create_success_embed(f"⏩ Jumped to **{format_duration(seconds)}**"))
        else:
            await interaction.followup.send(embed=create_error_embed("Couldn't seek in this song."))

    @app_commands.command(name="shuffle", description="Shuffle the queue")
    async def shuffle(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        if len(session.queue) < 2:
            await self._reply(interaction, create_error_embed("Need at least 2 songs in queue to shuffle!"), True)
            return
        count = await session.shuffle()
        await self._reply(interaction, create_success_embed(f"🔀 Shuffled {count} songs!"))

    @app_commands.command(name="loop", description="Toggle looping of the current song")
    async def loop(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        enabled = await session.toggle_loop()
        await self._reply(interaction, create_success_embed("🔂 Loop enabled." if enabled else "➡️ Loop disabled."))

    @app_commands.command(name="clear", description="Clear the queue")
    async def clear(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        count = await session.clear()
        await self._reply(interaction, create_success_embed(f"🗑️ Cleared {count} songs from the queue."))

    @app_commands.command(name="remove", description="Remove a song from the queue")
    @app_commands.describe(position="Queue position (see /queue)")
    async def remove(self, interaction: discord.Interaction, position: int):
        session = await self.active_session(interaction)
        if not session:
            return
        entry = await session.remove(position)
        if entry is None:
            await self._reply(interaction, create_error_embed(f"There is no song at position #{position}."), True)
            return
        await self._reply(interaction, create_success_embed(f"Removed **{entry.title}** from the queue."))

    @app_commands.command(name="volume", description="Set the volume")
    @app_commands.describe(level="Volume level (0-100)")
    async def volume(self, interaction: discord.Interaction, level: app_commands.Range[int, 0, 100]):
        session = self.registry.get(interaction.guild.id) if interaction.guild else None
        if session is not None:
            await session.set_volume(level, interaction.user.id)
            await self._reply(interaction, create_success_embed(f"🔊 Volume set to **{level}%**"))
            return
        if self.settings.user_volume_enabled and await self.volume_prefs.set_volume(interaction.user.id, level):
            await self._reply(interaction, create_success_embed(f"🔊 Your volume is now **{level}%**"), True)
            return
        await self._reply(interaction, create_error_embed("Not playing anything!"), True)

    @app_commands.command(name="history", description="Recently played songs")
    async def history(self, interaction: discord.Interaction):
        session = self.registry.get(interaction.guild.id) if interaction.guild else None
        if session is not None and session.history:
            await self._reply(interaction, create_history_embed(session.get_history(10)))
            return

        rows = await self.db.get_history(interaction.guild.id, limit=10) if interaction.guild else []
        entries = [
            HistoryEntry.from_dict({
                "id": row["track_id"],
                "title": row["title"],
                "source_url": row["url"],
                "duration": row["duration"],
                "requester_name": row["requester"],
                "played_at": row["timestamp"],
            })
            for row in rows
        ]
        await self._reply(interaction, create_history_embed(entries))

    # --- Saved queues ---

    @app_commands.command(name="savequeue", description="Save the queue so it can be restored later")
    async def savequeue(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        if await session.save():
            await self._reply(interaction, create_success_embed("💾 Queue saved."))
        else:
            await self._reply(interaction, create_error_embed("Queue saving is disabled or failed."), True)

    @app_commands.command(name="restorequeue", description="Restore the last saved queue")
    async def restorequeue(self, interaction: discord.Interaction):
        session = await self.join_session(interaction)
        if not session:
            return
        await interaction.response.defer()
        try:
            count = await session.restore()
        except SessionTerminated:
            await interaction.followup.send(embed=create_error_embed("The player was stopped. Please try again."))
            return
        if count:
            await interaction.followup.send(embed=create_success_embed(f"♻️ Restored **{count}** songs."))
        else:
            await interaction.followup.send(embed=create_info_embed("Nothing Saved", "There is no saved queue for this server."))

    # --- Radio ---

    @radio_group.command(name="start", description="Keep the queue filled with related songs")
    @app_commands.describe(query="Optional song to start from (defaults to the current song)")
    async def radio_start(self, interaction: discord.Interaction, query: Optional[str] = None):
        if not self.radio.enabled:
            await self._reply(interaction, create_error_embed("Radio mode is disabled."), True)
            return
        session = await self.join_session(interaction)
        if not session:
            return
        await interaction.response.defer()

        seed = session.now_playing
        if query:
            added = await self._enqueue(interaction, session, query)
            if not added:
                return
            seed = added[0]
        if seed is None:
            await interaction.followup.send(embed=create_error_embed("Play something first, or give me a song to start from."))
            return

        self.radio.start(interaction.guild.id, seed.id)
        added_count = await session.refill_radio()
        await interaction.followup.send(embed=create_success_embed(
            f"📻 Radio started from **{seed.title}**. Added {added_count} songs."
        ))

    @radio_group.command(name="stop", description="Stop radio mode")
    async def radio_stop(self, interaction: discord.Interaction):
        if not interaction.guild or not self.radio.is_active(interaction.guild.id):
            await self._reply(interaction, create_info_embed("Radio", "Radio is not running."), True)
            return
        self.radio.stop(interaction.guild.id)
        await self._reply(interaction, create_success_embed("📻 Radio stopped."))

    @radio_group.command(name="status", description="Show radio mode status")
    async def radio_status(self, interaction: discord.Interaction):
        stats = self.radio.get_stats(interaction.guild.id) if interaction.guild else None
        if not stats:
            await self._reply(interaction, create_info_embed("Radio", "Radio is not running."), True)
            return
        await self._reply(interaction, create_info_embed(
            "Radio", f"📻 Running from `{stats['seed_id']}`, {stats['songs_added']} songs added so far."
        ))

    # --- Effects ---

    @effect_group.command(name="set", description="Apply an audio effect to songs you request")
    @app_commands.describe(effect="Effect to apply")
    @app_commands.choices(effect=EFFECT_CHOICES)
    async def effect_set(self, interaction: discord.Interaction, effect: str):
        if not self.effects.enabled:
            await self._reply(interaction, create_error_embed("Audio effects are disabled."), True)
            return
        if not await self.effects.set_user_effect(interaction.user.id, effect):
            await self._reply(interaction, create_error_embed(f"Effect `{effect}` is not available."), True)
            return
        if effect == "none":
            message = "Effects cleared."
        else:
            message = f"🎛️ **{self.effects.get_effect(effect).name}** will apply from your next song."
        await self._reply(interaction, create_success_embed(message), True)

    @effect_group.command(name="list", description="List available audio effects")
    async def effect_list(self, interaction: discord.Interaction):
        current = await self.effects.get_user_effect(interaction.user.id)
        embed = create_info_embed("Audio Effects", self.effects.format_effect_list())
        embed.set_footer(text=f"Your effect: {current or 'none'}")
        await self._reply(interaction, embed, True)

    # --- Favorites ---

    @favorite_group.command(name="add", description="Add the current song to your favorites")
    async def favorite_add(self, interaction: discord.Interaction):
        session = await self.active_session(interaction)
        if not session:
            return
        if session.now_playing is None:
            await self._reply(interaction, create_error_embed("Nothing is playing!"), True)
            return
        ok, reason = await self.favorites.add_favorite(interaction.user.id, _song_dict(session.now_playing))
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"❤️ Added **{session.now_playing.title}** to your favorites."), True)

    @favorite_group.command(name="remove", description="Remove a song from your favorites")
    @app_commands.describe(song_id="Video id shown in /favorite list")
    async def favorite_remove(self, interaction: discord.Interaction, song_id: str):
        ok, reason = await self.favorites.remove_favorite(interaction.user.id, song_id)
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed("Removed from your favorites."), True)

    @favorite_group.command(name="list", description="Show your favorite songs")
    async def favorite_list(self, interaction: discord.Interaction):
        songs = await self.favorites.get_favorites(interaction.user.id)
        await self._reply(interaction, create_favorites_embed(
            "❤️ Your Favorites", songs, "*No favorites yet. Use `/favorite add` while a song plays.*"
        ), True)

    # --- Personal playlists ---

    @playlist_group.command(name="create", description="Create a personal playlist")
    @app_commands.describe(name="Playlist name")
    async def playlist_create(self, interaction: discord.Interaction, name: str):
        ok, reason = await self.favorites.create_playlist(interaction.user.id, name)
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"📁 Created playlist **{name.strip()}**."), True)

    @playlist_group.command(name="delete", description="Delete one of your playlists")
    @app_commands.describe(name="Playlist name")
    async def playlist_delete(self, interaction: discord.Interaction, name: str):
        ok, reason = await self.favorites.delete_playlist(interaction.user.id, name)
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"Deleted playlist **{name}**."), True)

    @playlist_group.command(name="rename", description="Rename one of your playlists")
    @app_commands.describe(name="Current name", new_name="New name")
    async def playlist_rename(self, interaction: discord.Interaction, name: str, new_name: str):
        ok, reason = await self.favorites.rename_playlist(interaction.user.id, name, new_name)
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"Renamed **{name}** to **{new_name}**."), True)

    @playlist_group.command(name="add", description="Add the current song to a playlist")
    @app_commands.describe(name="Playlist name")
    async def playlist_add(self, interaction: discord.Interaction, name: str):
        session = await self.active_session(interaction)
        if not session:
            return
        if session.now_playing is None:
            await self._reply(interaction, create_error_embed("Nothing is playing!"), True)
            return
        ok, reason = await self.favorites.add_to_playlist(interaction.user.id, name, _song_dict(session.now_playing))
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"Added **{session.now_playing.title}** to **{name}**."), True)

    @playlist_group.command(name="remove", description="Remove a song from a playlist")
    @app_commands.describe(name="Playlist name", song_id="Video id shown in /playlist list")
    async def playlist_remove(self, interaction: discord.Interaction, name: str, song_id: str):
        ok, reason = await self.favorites.remove_from_playlist(interaction.user.id, name, song_id)
        if not ok:
            await self._reply(interaction, create_error_embed(reason), True)
            return
        await self._reply(interaction, create_success_embed(f"Removed `{song_id}` from **{name}**."), True)

    @playlist_group.command(name="list", description="Show your playlists, or the songs in one")
    @app_commands.describe(name="Optional playlist to show")
    async def playlist_list(self, interaction: discord.Interaction, name: Optional[str] = None):
        if name:
            playlist = await self.favorites.get_playlist(interaction.user.id, name)
            if not playlist:
                await self._reply(interaction, create_error_embed("Playlist not found"), True)
                return
            await self._reply(interaction, create_favorites_embed(
                f"📁 {playlist['name']}", playlist["songs"], "*This playlist is empty.*"
            ), True)
            return

        playlists = await self.favorites.get_playlists(interaction.user.id)
        if not playlists:
            await self._reply(interaction, create_info_embed("Playlists", "You have no playlists. Use `/playlist create`."), True)
            return
        lines = [f"📁 **{p['name']}** ({p['song_count']} songs)" for p in playlists]
        await self._reply(interaction, create_info_embed("Your Playlists", "\n".join(lines)), True)

    @playlist_group.command(name="play", description="Queue one of your playlists")
    @app_commands.describe(name="Playlist name")
    async def playlist_play(self, interaction: discord.Interaction, name: str):
        playlist = await self.favorites.get_playlist(interaction.user.id, name)
        if not playlist:
            await self._reply(interaction, create_error_embed("Playlist not found"), True)
            return
        if not playlist["songs"]:
            await self._reply(interaction, create_error_embed("That playlist is empty."), True)
            return

        session = await self.join_session(interaction)
        if not session:
            return
        await interaction.response.defer()

        added: List[QueueEntry] = []
        for song in playlist["songs"]:
            try:
                added.extend(await session.enqueue(song["url"], interaction.user.display_name, interaction.user.id))
            except SessionTerminated:
                break
            except MusicError as e:
                logger.info(f"Skipping '{song['title']}' from playlist '{name}': {e}")

        if not added:
            await interaction.followup.send(embed=create_error_embed("None of the songs in that playlist could be queued."))
            return
        await interaction.followup.send(embed=create_playlist_added_embed(added, playlist["name"]))

    # --- Stats ---

    @app_commands.command(name="stats", description="Most played songs in this server")
    async def stats(self, interaction: discord.Interaction):
        if not interaction.guild:
            return
        embed = discord.Embed(title="📊 Music Stats", color=Config.COLOR_PRIMARY)

        top = await self.db.get_top_tracks(interaction.guild.id, limit=10) if self.settings.statistics_enabled else []
        if top:
            embed.add_field(
                name="Top Songs",
                value="\n".join(f"`{i}.` **{row['title']}** ({row['play_count']} plays)" for i, row in enumerate(top, start=1))[:1024],
                inline=False
            )
        else:
            embed.add_field(name="Top Songs", value="*No plays recorded yet.*", inline=False)

        session = self.registry.get(interaction.guild.id)
        if session is not None:
            embed.add_field(name="This Session", value=f"{sum(session.play_count.values())} plays", inline=True)
        cache = self.cache.get_stats()
        embed.add_field(name="Cache Hit Rate", value=f"{cache['hit_rate']:.1f}%", inline=True)
        await self._reply(interaction, embed)

    # --- Voice events ---

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Notice unexpected disconnects and leave empty channels."""
        session = self.registry.get(member.guild.id)
        if session is None:
            return

        if self.bot.user and member.id == self.bot.user.id:
            if before.channel is not None and after.channel is None:
                session.transport.notify_disconnected()
            return

        if member.bot or not session.transport.is_connected:
            return

        channel = session.transport.channel
        if before.channel == channel and after.channel != channel:
            if not any(not m.bot for m in channel.members):
                logger.info(f"Auto-Disconnect: VC empty in guild {member.guild.id}.")
                await session.teardown(reason="voice channel empty", keep_snapshot=True)


async def setup(bot: commands.Bot):
    """Setup function for loading the cog."""
    await bot.add_cog(Music(bot))
