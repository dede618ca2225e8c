import logging
from enum import Enum

import discord
from discord.ext import commands

from source.context import Context
from source.utils import parse_taunt_index

logger = logging.getLogger(__name__)

RECORD_COMMAND = "record"

# Embed descriptions are capped at 4096 characters
EMBED_DESCRIPTION_LIMIT = 4096


class CommandKind(str, Enum):
    RECORD = "record"
    TAUNT = "taunt"
    NONE = "none"


def classify_message(content: str) -> tuple[CommandKind, int | None]:
    """
    Classify a chat message body.

    Evaluated in order: the literal `record`, then a non-zero integer
    (the taunt index), otherwise nothing.

    Example:
        >>> classify_message(" 12 ")
        (<CommandKind.TAUNT: 'taunt'>, 12)
    """
    text = content.strip()
    if text == RECORD_COMMAND:
        return CommandKind.RECORD, None

    index = parse_taunt_index(text)
    if index is not None:
        return CommandKind.TAUNT, index

    return CommandKind.NONE, None


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Taunts(commands.Cog):
    """Numeric taunt replies and the `record` chat command."""

    def __init__(self, context: Context):
        self.context = context
        self.bot = context.bot
        self.services = context.services_manager

    # -------------------------------------------------------------- #
    # Event Handler Filter
    # -------------------------------------------------------------- #

    async def filter_message(self, message: discord.Message) -> bool:
        """Filter to determine if this cog should handle the message.

        This cog handles messages where:
        - The author is not a bot
        - The body is `record` or an integer

        Args:
            message: The Discord message object

        Returns:
            True if this handler should process the message, False otherwise
        """
        if message.author.bot:
            return False

        kind, _ = classify_message(message.content)
        return kind != CommandKind.NONE

    # -------------------------------------------------------------- #
    # Event Handlers
    # -------------------------------------------------------------- #

    async def handle_message(self, message: discord.Message) -> bool:
        """Route a classified message to the recorder or the taunt responder.

        Returns:
            True to pass through to next handler
        """
        kind, index = classify_message(message.content)

        if kind == CommandKind.RECORD:
            await self.services.logging_service.info(
                f"Record request from {message.author.id} in channel {message.channel.id}"
            )
            await self.services.discord_recorder_service_manager.start_session(message)
        elif kind == CommandKind.TAUNT:
            await self.services.taunt_responder_service.say_taunt(message, index)

        return True

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="taunts", description="List every taunt and its number")
    async def taunts(self, ctx: discord.ApplicationContext):
        """Display the taunt catalog with an embed."""
        await self.services.logging_service.info(
            f"User {ctx.author.id} ({ctx.author.name}) requested the taunt list"
        )

        catalog = self.services.taunt_catalog_service.list_taunts()
        if not catalog:
            await ctx.respond("No taunts are loaded.", ephemeral=True)
            return

        lines = [f"**{taunt.index}** {taunt.text}" for taunt in catalog]
        description = "\n".join(lines)
        if len(description) > EMBED_DESCRIPTION_LIMIT:
            description = description[: EMBED_DESCRIPTION_LIMIT - 1] + "…"

        embed = discord.Embed(
            title="Taunts",
            description=description,
            color=discord.Color.blue(),
        )
        embed.set_footer(text="Send a number in chat to use a taunt")

        await ctx.respond(embed=embed, ephemeral=True)


def setup(context: Context):
    """Setup function for the Taunts cog.

    Args:
        context: The application context instance

    Returns:
        The initialized Taunts cog instance
    """
    taunts = Taunts(context)
    context.bot.add_cog(taunts)
    return taunts
