"""
Cadence - Main Entry Point
A Discord music bot that downloads, caches and plays audio with yt-dlp.
"""
import asyncio
import logging
import discord
from discord import app_commands
from discord.ext import commands

from config import Config
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence'))


class CadenceBot(commands.Bot):
    """Custom bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.voice_states = True

        super().__init__(
            command_prefix=Config.BOT_PREFIX,
            intents=intents,
            activity=discord.Activity(
                type=discord.ActivityType.listening,
                name="/play 🎵"
            )
        )

    async def setup_hook(self):
        """Called when the bot starts, before login."""
        self.tree.on_error = self.on_app_command_error

        await self.load_extension("cogs.music")
        logger.info("Loaded music cog")

        await self.load_extension("cogs.admin")
        logger.info("Loaded admin cog")

        await self.tree.sync()
        logger.info("Synced slash commands")

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Fallback for slash command errors no cog handled."""
        if isinstance(error, app_commands.CheckFailure):
            # interaction_check / permission checks already replied
            return
        command = interaction.command.qualified_name if interaction.command else "?"
        logger.error(f"Error in /{command}: {error}", exc_info=error)
        message = "❌ Something went wrong while running that command."
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException as e:
            logger.warning(f"Could not report error for /{command}: {e}")

    async def on_ready(self):
        """Called when the bot is fully ready."""
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")
        logger.info("━" * 50)
        logger.info("🎵 Cadence is ready!")
        logger.info("━" * 50)

    async def close(self):
        # Unloading the music cog tears down every session and saves its queue
        logger.info("Shutting down")
        await super().close()


async def main():
    """Main entry point."""
    Config.validate()

    bot = CadenceBot()

    async with bot:
        await bot.start(Config.DISCORD_TOKEN)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
