# Main File

import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import discord
import dotenv

from source.context import Context
from source.message_router import MessageRouter
from source.services.constructor import construct_services_manager


def configure_startup_logging(logs_dir: Path = Path("logs")) -> Path:
    """
    Route built-in logging to stdout and a timestamped file.

    Covers everything before AsyncLoggingService starts, plus py-cord and the
    module loggers. The async logger appends to the same file.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"app_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log"

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, mode="a", encoding="utf-8"),
        ],
        force=True,
    )
    return log_file


log_file = configure_startup_logging()
dotenv.load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

# Guild IDs for instant slash command registration during development
# Leave empty [] for global commands (takes up to 1 hour to register)
DEBUG_GUILD_IDS: list[int] = []

intents = discord.Intents.default()
intents.voice_states = True
intents.message_content = True  # taunt numbers and `record` are plain chat messages

bot = discord.Bot(intents=intents, debug_guilds=DEBUG_GUILD_IDS or None)
message_router = MessageRouter()


async def load_cogs(context: Context):
    """Add the cogs to the bot and register their chat message routes."""
    from cogs.taunts import setup as setup_taunts
    from cogs.voice import setup as setup_voice

    logger = context.services_manager.logging_service

    setup_voice(context)
    await logger.info("[OK] Loaded cogs.voice")

    taunts_cog = setup_taunts(context)
    message_router.register_handler(
        "taunts", filter_func=taunts_cog.filter_message, handler_func=taunts_cog.handle_message
    )
    await logger.info("[OK] Loaded cogs.taunts and registered its message route")


async def is_bot_developer(user_id: int) -> bool:
    """True if the user owns the application or is on its team."""
    info = await bot.application_info()
    if info.team:
        return user_id in [member.id for member in info.team.members]
    return info.owner is not None and user_id == info.owner.id


# -------------------------------------------------------------- #
# Commands
# -------------------------------------------------------------- #


@bot.command(name="shutdown", description="Stops the bot after finishing running work")
async def shutdown(ctx: discord.ApplicationContext):
    """Stop the bot once the active recording and playbacks have finished."""
    if not await is_bot_developer(ctx.author.id):
        await ctx.respond("You do not have permission to use this command.", ephemeral=True)
        return

    services = bot.context.services_manager
    await ctx.respond("Shutting down once the current recording and taunts finish...")
    await services.logging_service.info(
        f"Shutdown requested by {ctx.author.name} ({ctx.author.id})"
    )

    await services.shutdown_all(timeout=60.0)
    try:
        await ctx.followup.send("All services stopped. Bye!")
    except discord.HTTPException as e:
        logging.warning(f"Could not send shutdown confirmation: {e}")

    await bot.close()


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_message(message: discord.Message):
    await message_router.process_message(message)


@bot.event
async def on_ready():
    services = bot.context.services_manager
    logger = services.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})")
    await logger.info(f"Connected to {len(bot.guilds)} guild(s):")
    for guild in bot.guilds:
        await logger.info(f"  - {guild.name} (ID: {guild.id})")

    await logger.info(f"{len(services.taunt_catalog_service)} taunts loaded")

    for cmd in bot.pending_application_commands:
        if isinstance(cmd, discord.SlashCommand):
            await logger.info(f"  /{cmd.name} - {cmd.description}")
    if DEBUG_GUILD_IDS:
        await logger.info(f"Commands registered for guilds: {DEBUG_GUILD_IDS}")


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
    logger = bot.context.services_manager.logging_service
    await logger.error(f"Error in /{ctx.command.name}: {type(error).__name__}: {error}")

    reply = (
        "You don't have permission to use this command."
        if isinstance(error, discord.CheckFailure)
        else "Something went wrong running that command."
    )
    try:
        await ctx.respond(reply, ephemeral=True)
    except discord.HTTPException as e:
        logging.warning(f"Could not report command error: {e}")


# -------------------------------------------------------------- #
# Run Bot
# -------------------------------------------------------------- #


async def main():
    print("=" * 40)
    print("Starting services...")

    context = Context()
    services_manager = construct_services_manager(
        context=context,
        recordings_path=os.getenv("RECORDINGS_PATH", "recordings"),
        taunt_catalog_path=os.getenv("TAUNT_CATALOG_PATH", "taunts.json"),
        taunt_audio_path=os.getenv("TAUNT_AUDIO_PATH", "audio"),
        log_file=log_file.name,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    context.set_bot(bot)
    bot.context = context

    token = os.getenv("DISCORD_API_TOKEN")
    if not token:
        await logger.error("DISCORD_API_TOKEN not found in environment variables")
        await services_manager.shutdown_all()
        return

    async with bot:
        await load_cogs(context)
        await bot.start(token)


if __name__ == "__main__":
    asyncio.run(main())
