"""
Voice transports.

`Transport` is what a PlaybackSession drives. `VoiceTransport` binds it to a
discord.py VoiceClient. discord.py runs the player `after` callback on its
audio thread, so it is marshalled back onto the event loop; a generation
counter drops callbacks that belong to a resource we already replaced or
stopped on purpose.
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Union

import discord

from config import Config
from player.errors import TransportError
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Transport'))

IdleCallback = Callable[[Optional[Exception]], None]
DisconnectCallback = Callable[[], None]
Resource = Union[str, Path, discord.AudioSource]


class Transport:
    """Contract between a session and whatever emits audio to a room."""

    def __init__(self):
        self._idle_callback: Optional[IdleCallback] = None
        self._disconnect_callback: Optional[DisconnectCallback] = None

    def on_idle(self, callback: IdleCallback):
        """Register the single completion hook (replaces any previous one)."""
        self._idle_callback = callback

    def on_disconnected(self, callback: DisconnectCallback):
        self._disconnect_callback = callback

    def _emit_idle(self, error: Optional[Exception] = None):
        if self._idle_callback is not None:
            self._idle_callback(error)

    def _emit_disconnected(self):
        if self._disconnect_callback is not None:
            self._disconnect_callback()

    @property
    def is_connected(self) -> bool:
        raise NotImplementedError

    @property
    def is_paused(self) -> bool:
        return False

    async def connect(self):
        raise NotImplementedError

    async def reconnect(self):
        raise NotImplementedError

    async def disconnect(self):
        raise NotImplementedError

    def play(self, resource: Resource, *, start: float = 0):
        """Bind `resource`. `start` only applies when the transport opens a file path itself."""
        raise NotImplementedError

    def stop(self, *, silent: bool = False):
        """Stop the bound resource. `silent` suppresses the idle callback."""
        raise NotImplementedError

    def pause(self) -> bool:
        raise NotImplementedError

    def resume(self) -> bool:
        raise NotImplementedError

    def set_volume(self, volume: float):
        """Volume as a 0..1 factor."""
        raise NotImplementedError


class VoiceTransport(Transport):
    """Transport over a discord.py voice connection."""

    def __init__(self, channel: discord.VoiceChannel, *, timeout: float = 30.0,
                 voice_client: Optional[discord.VoiceClient] = None):
        super().__init__()
        self.channel = channel
        self.timeout = timeout
        self.voice_client = voice_client
        self._generation = 0
        self._closing = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_connected(self) -> bool:
        return self.voice_client is not None and self.voice_client.is_connected()

    @property
    def is_paused(self) -> bool:
        return self.voice_client is not None and self.voice_client.is_paused()

    async def connect(self):
        if self.is_connected:
            return
        self._loop = asyncio.get_running_loop()
        self._closing = False
        existing = self.channel.guild.voice_client
        if isinstance(existing, discord.VoiceClient) and existing.is_connected():
            if existing.channel != self.channel:
                await existing.move_to(self.channel)
            self.voice_client = existing
            return
        try:
            self.voice_client = await self.channel.connect(timeout=self.timeout, self_deaf=True)
        except (asyncio.TimeoutError, discord.ClientException, discord.HTTPException) as e:
            raise TransportError(detail=f"Failed to join {self.channel}: {e}") from e
        logger.info(f"Connected to voice channel {self.channel} (guild {self.channel.guild.id})")

    async def reconnect(self):
        """Drop any half-dead connection and join again."""
        if self.voice_client is not None:
            try:
                await self.voice_client.disconnect(force=True)
            except (discord.ClientException, discord.HTTPException) as e:
                logger.debug(f"Ignoring error while dropping stale voice client: {e}")
            self.voice_client = None
        await self.connect()

    async def disconnect(self):
        self._closing = True
        self._generation += 1
        vc, self.voice_client = self.voice_client, None
        if vc is None:
            return
        try:
            await vc.disconnect(force=True)
        except (discord.ClientException, discord.HTTPException) as e:
            logger.warning(f"Error disconnecting from guild {self.channel.guild.id}: {e}")
        logger.info(f"Disconnected from voice in guild {self.channel.guild.id}")

    def notify_disconnected(self):
        """Called when the bot left the channel without us asking it to."""
        if self._closing:
            return
        self._generation += 1
        logger.warning(f"Voice connection lost in guild {self.channel.guild.id}")
        self._emit_disconnected()

    def _make_source(self, resource: Resource, start: float = 0) -> discord.AudioSource:
        if isinstance(resource, discord.AudioSource):
            return resource
        return discord.PCMVolumeTransformer(discord.FFmpegPCMAudio(str(resource), **Config.ffmpeg_options(start)))

    def play(self, resource: Resource, *, start: float = 0):
        if not self.is_connected:
            raise TransportError(detail="Not connected to a voice channel")

        loop = self._loop or asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation

        def after(error: Optional[Exception]):
            # Runs on the audio thread
            loop.call_soon_threadsafe(self._after_play, generation, error)

        if self.voice_client.is_playing() or self.voice_client.is_paused():
            self.voice_client.stop()
        try:
            self.voice_client.play(self._make_source(resource, start), after=after)
        except discord.ClientException as e:
            raise TransportError(detail=str(e)) from e

    def _after_play(self, generation: int, error: Optional[Exception]):
        if generation != self._generation:
            logger.debug(f"Dropping stale player callback (generation {generation})")
            return
        if error:
            logger.error(f"Player error in guild {self.channel.guild.id}: {error}")
        self._emit_idle(error)

    def stop(self, *, silent: bool = False):
        if silent:
            self._generation += 1
        if self.voice_client is not None and (self.voice_client.is_playing() or self.voice_client.is_paused()):
            self.voice_client.stop()

    def pause(self) -> bool:
        if self.voice_client is not None and self.voice_client.is_playing():
            self.voice_client.pause()
            return True
        return False

    def resume(self) -> bool:
        if self.voice_client is not None and self.voice_client.is_paused():
            self.voice_client.resume()
            return True
        return False

    def set_volume(self, volume: float):
        source = self.voice_client.source if self.voice_client is not None else None
        if isinstance(source, discord.PCMVolumeTransformer):
            source.volume = max(0.0, min(volume, 1.0))
