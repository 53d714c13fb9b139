import io
import discord
from discord.ext import commands
from discord import app_commands
import logging
from typing import Optional, TYPE_CHECKING

from config import Config
from utils.embeds import (
    create_cache_list_embed,
    create_cache_stats_embed,
    create_clean_result_embed,
    create_error_embed,
    create_success_embed,
)
from utils.logger import set_logger, get_last_log_lines

if TYPE_CHECKING:
    from cogs.music import Music

logger = set_logger(logging.getLogger('Cadence.Admin'))


class Admin(commands.Cog):
    """Administrative commands for the bot."""

    cache_group = app_commands.Group(
        name="cache",
        description="Manage the audio cache (Admin only)",
        default_permissions=discord.Permissions(administrator=True),
    )

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @property
    def music(self) -> Optional["Music"]:
        return self.bot.get_cog("Music")

    async def _require_music(self, interaction: discord.Interaction) -> Optional["Music"]:
        music = self.music
        if music is None:
            await interaction.response.send_message(
                embed=create_error_embed("The music module is not loaded."), ephemeral=True
            )
        return music

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        if isinstance(error, app_commands.MissingPermissions):
            await interaction.response.send_message("❌ You don't have permission to use this command.", ephemeral=True)

    # --- Cache ---

    @cache_group.command(name="stats", description="Show cache statistics")
    async def cache_stats(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        downloading = sum(len(s.downloading) for s in music.registry.sessions())
        embed = create_cache_stats_embed(
            music.cache.get_stats(), music.settings.cache.max_size_bytes, downloading
        )
        if not music.cache.enabled:
            embed.set_footer(text="Smart cache is disabled; files are deleted after playback.")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @cache_group.command(name="list", description="List cached songs by play count")
    async def cache_list(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        await interaction.response.defer(ephemeral=True)
        counts = await music.play_counts()
        entries = music.cache.list_entries(counts)
        await interaction.followup.send(embed=create_cache_list_embed(entries), ephemeral=True)

    @cache_group.command(name="clean", description="Run cache eviction now")
    async def cache_clean(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        if not music.cache.enabled:
            await interaction.response.send_message(
                embed=create_error_embed("Smart cache is disabled."), ephemeral=True
            )
            return
        await interaction.response.defer(ephemeral=True)
        counts = await music.play_counts()
        result = await self.bot.loop.run_in_executor(None, music.cache.clean, counts)
        logger.info(f"Cache clean requested by {interaction.user} (ID: {interaction.user.id})")
        await interaction.followup.send(embed=create_clean_result_embed(result), ephemeral=True)

    @cache_group.command(name="clear", description="Delete every cached file")
    async def cache_clear(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        if any(s.now_playing or s.downloading for s in music.registry.sessions()):
            await interaction.response.send_message(
                embed=create_error_embed("Stop playback everywhere before clearing the cache."), ephemeral=True
            )
            return
        await interaction.response.defer(ephemeral=True)
        deleted = await self.bot.loop.run_in_executor(None, music.cache.clear_all)
        logger.info(f"Cache cleared by {interaction.user} (ID: {interaction.user.id})")
        await interaction.followup.send(
            embed=create_success_embed(f"🗑️ Deleted **{deleted}** cached file(s)."), ephemeral=True
        )

    @cache_group.command(name="resetstats", description="Reset cache hit/miss counters")
    async def cache_resetstats(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        music.cache.reset_stats()
        await interaction.response.send_message(
            embed=create_success_embed("Cache statistics reset."), ephemeral=True
        )

    # --- Status ---

    @app_commands.command(name="status", description="Bot storage and session status (Admin only)")
    @app_commands.checks.has_permissions(administrator=True)
    async def status(self, interaction: discord.Interaction):
        music = await self._require_music(interaction)
        if not music:
            return
        await interaction.response.defer(ephemeral=True)

        queues = await music.persistence.get_stats()
        volumes = await music.volume_prefs.get_stats()
        favorites = await music.favorites.get_stats()

        embed = discord.Embed(title="🛠️ Cadence Status", color=Config.COLOR_INFO)
        embed.add_field(name="Active Sessions", value=str(len(music.registry.sessions())), inline=True)
        embed.add_field(name="Rate Limited Users", value=str(music.rate_limiter.tracked_users()), inline=True)
        embed.add_field(
            name="Saved Queues",
            value=f"{queues['total_guilds']} servers, {queues['total_songs']} songs",
            inline=True
        )
        embed.add_field(name="Volume Preferences", value=str(volumes.get("total_users", 0)), inline=True)
        embed.add_field(
            name="Favorites",
            value=", ".join(f"{v} {k.replace('_', ' ')}" for k, v in favorites.items()) or "-",
            inline=False
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="logs", description="Get the last 500 log lines (Admin only)")
    @app_commands.checks.has_permissions(administrator=True)
    async def logs(self, interaction: discord.Interaction):
        """Send the last 500 log lines as a DM attachment."""
        await interaction.response.defer(ephemeral=True)

        logger.info(f"Logs requested by {interaction.user} (ID: {interaction.user.id})")

        log_content = get_last_log_lines(500)

        file = discord.File(
            io.BytesIO(log_content.encode('utf-8')),
            filename="cadence_logs.txt"
        )

        try:
            await interaction.user.send(
                content="📋 **Cadence Logs** (Last 500 lines)",
                file=file
            )
            await interaction.followup.send("✅ Logs sent to your DMs!", ephemeral=True)
        except discord.Forbidden:
            # DMs disabled, send in channel as ephemeral
            file = discord.File(
                io.BytesIO(log_content.encode('utf-8')),
                filename="cadence_logs.txt"
            )
            await interaction.followup.send(
                content="📋 **Cadence Logs** (Last 500 lines)\n*Couldn't DM you, here's the file:*",
                file=file,
                ephemeral=True
            )


async def setup(bot: commands.Bot):
    await bot.add_cog(Admin(bot))
