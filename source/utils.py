import asyncio
import logging
import uuid
from datetime import datetime, timezone

import discord

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


SESSION_FOLDER_TIME_FORMAT = "%Y-%m-%d %H-%M-%S"

SESSION_ID_LENGTH = 16  # fixed length for recording session IDs


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(SESSION_ID_LENGTH)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_utc() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def format_session_folder_name(started_at: datetime) -> str:
    """
    Build the recording folder name for a session start time.

    Aware datetimes are converted to UTC first, naive ones are used as-is.

    Example:
        >>> format_session_folder_name(datetime(2021, 3, 4, 5, 6, 7))
        '2021-03-04 05-06-07'
    """
    if started_at.tzinfo is not None:
        started_at = started_at.astimezone(timezone.utc)
    return started_at.strftime(SESSION_FOLDER_TIME_FORMAT)


def parse_taunt_index(content: str) -> int | None:
    """
    Parse a chat message body as a taunt index.

    Returns the integer when the trimmed body is an optionally signed run of ASCII
    digits with a non-zero value, None otherwise. Bounds against the catalog are
    checked by the responder.
    """
    text = content.strip()
    digits = text[1:] if text[:1] in ("+", "-") else text
    # int() alone would also take "1_0" and non-ASCII digits
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(text) or None


# -------------------------------------------------------------- #
# Bot Utilities
# -------------------------------------------------------------- #


class BotUtils:
    """Utility class for Discord bot operations."""

    @staticmethod
    def find_member_voice_channel(member) -> "discord.VoiceChannel | None":
        """
        Find the voice channel a message author is connected to.

        Args:
            member: Message author (Member in guilds, User in DMs)

        Returns:
            Voice channel if the member is connected, None otherwise
        """
        voice = getattr(member, "voice", None)
        if voice is None:
            return None
        return voice.channel

    @staticmethod
    async def connect_to_channel(
        guild: discord.Guild,
        target_channel: discord.VoiceChannel,
    ) -> discord.VoiceClient:
        """
        Connect to a voice channel, reusing or moving an existing guild connection.

        Args:
            guild: Guild the channel belongs to
            target_channel: Voice channel to connect to

        Returns:
            Connected voice client

        Raises:
            discord.DiscordException: If the connection cannot be established
            asyncio.TimeoutError: If the voice handshake times out
        """
        voice_client = guild.voice_client

        # Check if bot is in call already
        if voice_client and voice_client.is_connected():
            # Same channel, nothing to do
            if voice_client.channel.id == target_channel.id:
                return voice_client

            await voice_client.move_to(target_channel)
            return voice_client

        # Not connected - establish new connection
        return await target_channel.connect()

    @staticmethod
    async def disconnect_quietly(voice_client: discord.VoiceClient | None) -> None:
        """Leave a voice channel, logging instead of raising on failure."""
        if voice_client is None or not voice_client.is_connected():
            return
        try:
            await voice_client.disconnect()
        except (discord.DiscordException, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to disconnect from voice channel: {e}")

    @staticmethod
    async def safe_reply(message: discord.Message, content: str) -> bool:
        """
        Reply to a message.

        Returns:
            True if the reply was sent, False if Discord rejected it
        """
        try:
            await message.reply(content)
            return True
        except discord.Forbidden:
            logger.warning(f"Missing permissions to reply in channel {message.channel.id}")
            return False
        except discord.HTTPException as e:
            logger.error(f"HTTP error while replying to message {message.id}: {e}")
            return False
