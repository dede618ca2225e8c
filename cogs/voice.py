import discord
from discord.ext import commands

from source.context import Context


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice recorder status and diagnostics."""

    def __init__(self, context: Context):
        self.context = context
        self.bot = context.bot
        self.services = context.services_manager

    async def on_voice_state_update(self, member, before, after):
        """Log the bot's own voice state changes.

        Diagnostics only; recording sessions never react to these events.
        """
        if self.bot.user is None or member.id != self.bot.user.id:
            return

        before_channel = before.channel.id if before.channel else None
        after_channel = after.channel.id if after.channel else None
        if before_channel == after_channel:
            return

        logging_service = self.services.logging_service
        guild_id = member.guild.id
        if after_channel is None:
            await logging_service.warning(
                f"Bot disconnected from voice channel {before_channel} in guild {guild_id}"
            )
        elif before_channel is None:
            await logging_service.info(
                f"Bot connected to voice channel {after_channel} in guild {guild_id}"
            )
        else:
            await logging_service.info(
                f"Bot moved from voice channel {before_channel} to {after_channel} "
                f"in guild {guild_id}"
            )

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(
        name="recording_status", description="Show whether a voice recording is running"
    )
    async def recording_status(self, ctx: discord.ApplicationContext) -> None:
        """Report the recorder's registry state."""
        recorder = self.services.discord_recorder_service_manager
        session = recorder.get_active_session()

        if session is None:
            await ctx.respond("No recording in progress.", ephemeral=True)
            return

        embed = discord.Embed(title="Recording in progress", color=discord.Color.red())
        embed.add_field(name="State", value=session.state.value, inline=True)
        embed.add_field(name="Requested by", value=f"<@{session.requester_id}>", inline=True)
        if session.channel_id:
            embed.add_field(name="Channel", value=f"<#{session.channel_id}>", inline=True)
        embed.add_field(
            name="Started",
            value=discord.utils.format_dt(session.started_at, style="R"),
            inline=True,
        )
        embed.add_field(name="Folder", value=f"`{session.output_folder}`", inline=False)

        await ctx.respond(embed=embed, ephemeral=True)


def setup(context: Context):
    voice = Voice(context)
    context.bot.add_cog(voice)

    # -------------------------------------------------------------- #
    # Add listeners
    # -------------------------------------------------------------- #

    context.bot.add_listener(voice.on_voice_state_update, "on_voice_state_update")
    return voice
