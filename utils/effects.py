"""
Audio effects applied through FFmpeg filter chains.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import discord

from config import Config, EffectsSettings
from utils.logger import set_logger
from utils.preferences import EffectPreferences

logger = set_logger(logging.getLogger('Cadence.Effects'))


@dataclass(frozen=True)
class Effect:
    id: str
    name: str
    filter: str
    description: str


EFFECTS: Dict[str, Effect] = {
    e.id: e for e in (
        Effect("nightcore", "Nightcore", "aresample=48000,asetrate=48000*1.25,aresample=48000,atempo=1.06",
               "Speeds up tempo and raises pitch"),
        Effect("bassboost", "Bass Boost", "bass=g=10", "Amplifies low frequencies"),
        Effect("8d", "8D Audio", "apulsator=hz=0.125", "Creates surround sound effect"),
        Effect("vaporwave", "Vaporwave", "aresample=48000,asetrate=48000*0.8,aresample=48000,atempo=1.1",
               "Slows down tempo and lowers pitch"),
        Effect("treble", "Treble Boost", "treble=g=5", "Amplifies high frequencies"),
        Effect("echo", "Echo", "aecho=0.8:0.9:1000:0.3", "Adds echo effect"),
        Effect("reverb", "Reverb", "aecho=0.8:0.88:60:0.4", "Adds reverb/hall effect"),
        Effect("chipmunk", "Chipmunk", "aresample=48000,asetrate=48000*1.5,aresample=48000",
               "High-pitched voice effect"),
        Effect("deepvoice", "Deep Voice", "aresample=48000,asetrate=48000*0.7,aresample=48000",
               "Low-pitched voice effect"),
        Effect("distortion", "Distortion", "acompressor=threshold=0.089:ratio=9:attack=200:release=1000",
               "Adds distortion effect"),
        Effect("tremolo", "Tremolo", "tremolo=f=5:d=0.5", "Rapid volume variation"),
        Effect("vibrato", "Vibrato", "vibrato=f=5:d=0.5", "Pitch oscillation effect"),
    )
}


class AudioEffects:
    """Looks up a requester's effect and builds the matching audio source."""

    def __init__(self, settings: EffectsSettings, preferences: Optional[EffectPreferences] = None):
        self.settings = settings
        self.preferences = preferences

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def is_effect_available(self, effect_id: Optional[str]) -> bool:
        if not self.enabled or not effect_id:
            return False
        return effect_id in self.settings.available_effects and effect_id in EFFECTS

    def get_available_effects(self) -> List[Effect]:
        if not self.enabled:
            return []
        return [EFFECTS[e] for e in self.settings.available_effects if e in EFFECTS]

    def get_effect(self, effect_id: str) -> Optional[Effect]:
        return EFFECTS[effect_id] if self.is_effect_available(effect_id) else None

    def get_filter_string(self, effect_id: str) -> Optional[str]:
        effect = self.get_effect(effect_id)
        return effect.filter if effect else None

    def combine_effects(self, effect_ids: Iterable[str]) -> Optional[str]:
        filters = [EFFECTS[e].filter for e in effect_ids if self.is_effect_available(e)]
        return ",".join(filters) if filters else None

    async def set_user_effect(self, user_id: int, effect_id: Optional[str]) -> bool:
        """Set (or with None / "none" clear) a user's effect. False if unknown."""
        if self.preferences is None:
            return False
        if effect_id is None or effect_id == "none":
            await self.preferences.clear_effect(user_id)
            return True
        if not self.is_effect_available(effect_id):
            return False
        await self.preferences.set_effect(user_id, effect_id)
        return True

    async def get_user_effect(self, user_id: Optional[int]) -> Optional[str]:
        if not self.enabled or user_id is None or self.preferences is None:
            return None
        effect_id = await self.preferences.get_effect(user_id)
        return effect_id if self.is_effect_available(effect_id) else None

    def build_transform(self, effect_id: Optional[str], file_path: str, volume: float = 1.0,
                        start: float = 0) -> discord.PCMVolumeTransformer:
        """FFmpeg source for `file_path` with the effect's filter chain, if any."""
        audio_filter = self.get_filter_string(effect_id) if effect_id else None
        if audio_filter:
            logger.debug(f"Applying effect '{effect_id}' to {file_path}")

        source = discord.FFmpegPCMAudio(file_path, **Config.ffmpeg_options(start, audio_filter))
        return discord.PCMVolumeTransformer(source, volume=volume)

    async def create_resource(self, file_path: str, user_id: Optional[int], volume: float = 1.0,
                              start: float = 0) -> discord.PCMVolumeTransformer:
        effect_id = await self.get_user_effect(user_id)
        return self.build_transform(effect_id, file_path, volume, start)

    def format_effect_list(self) -> str:
        effects = self.get_available_effects()
        if not effects:
            return "No effects available"
        return "\n\n".join(f"**{e.name}** (`{e.id}`)\n{e.description}" for e in effects)
