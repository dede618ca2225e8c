from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from source.context import Context
    from source.services.taunt_catalog.manager import Taunt

from source.services.manager import BaseTauntResponderServiceManager
from source.utils import BotUtils

logger = logging.getLogger(__name__)


@dataclass
class PlaybackResult:
    """Outcome of one join → play → leave cycle."""

    success: bool
    index: int
    channel_id: int | None = None
    error: str | None = None
    skipped: bool = False


# -------------------------------------------------------------- #
# Taunt Responder Service
# -------------------------------------------------------------- #


class TauntResponderService(BaseTauntResponderServiceManager):
    """
    Replies to taunt requests and plays the matching clip in the requester's voice channel.

    Every playback is an asyncio task kept in a set until it finishes, so shutdown
    can wait for or cancel it. Playbacks in the same guild are serialized because a
    guild only has one voice connection.
    """

    PLAYBACK_FAILED_REPLY = "Couldn't play that taunt in voice."

    def __init__(self, context: Context, ffmpeg_path: str = "ffmpeg"):
        super().__init__(context)
        self.ffmpeg_path = ffmpeg_path

        self._playback_tasks: set[asyncio.Task] = set()
        self._guild_locks: dict[int, asyncio.Lock] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("TauntResponderService initialized")
        return True

    async def on_close(self):
        await self.cancel_playbacks()
        return True

    # -------------------------------------------------------------- #
    # Taunt Methods
    # -------------------------------------------------------------- #

    async def say_taunt(self, message: discord.Message, index: int) -> bool:
        """
        Reply with taunt `index` and start voice playback if the author is in voice.

        Args:
            message: The chat message that requested the taunt
            index: 1-based catalog index

        Returns:
            True if a taunt was sent, False if the index was out of bounds
        """
        taunt = self.services.taunt_catalog_service.get_taunt(index)
        if taunt is None:
            await self.services.logging_service.debug(
                f"Ignoring taunt request {index}: catalog has "
                f"{len(self.services.taunt_catalog_service)} taunts"
            )
            return False

        # The text reply never waits on voice
        await BotUtils.safe_reply(message, taunt.text)

        channel = BotUtils.find_member_voice_channel(message.author)
        if channel is None or message.guild is None:
            return True

        if self.context.is_shutting_down():
            return True

        recorder = self.services.discord_recorder_service_manager
        if recorder.is_recording_in_guild(message.guild.id):
            await self.services.logging_service.info(
                f"Skipping taunt {index} playback: a recording holds the voice connection "
                f"in guild {message.guild.id}"
            )
            return True

        if not os.path.isfile(taunt.audio_path):
            await self.services.logging_service.warning(
                f"Skipping taunt {index} playback: {taunt.audio_path} does not exist"
            )
            return True

        self.start_playback(message, taunt, channel)
        return True

    def start_playback(
        self, message: discord.Message, taunt: Taunt, channel: discord.VoiceChannel
    ) -> asyncio.Task:
        """Schedule a tracked playback task and return it."""
        task = asyncio.create_task(
            self._play_taunt(message, taunt, channel),
            name=f"taunt-playback-{taunt.index}-{channel.id}",
        )
        self._playback_tasks.add(task)
        task.add_done_callback(self._on_playback_done)
        return task

    def get_active_playbacks(self) -> set[asyncio.Task]:
        return set(self._playback_tasks)

    async def wait_for_playbacks(self) -> None:
        if self._playback_tasks:
            await asyncio.gather(*list(self._playback_tasks), return_exceptions=True)

    async def cancel_playbacks(self) -> None:
        tasks = list(self._playback_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _play_taunt(
        self, message: discord.Message, taunt: Taunt, channel: discord.VoiceChannel
    ) -> PlaybackResult:
        """Join the channel, play the clip to the end, then leave."""
        guild = message.guild
        lock = self._guild_locks.setdefault(guild.id, asyncio.Lock())

        async with lock:
            # A recording may have taken the guild while this playback was queued
            recorder = self.services.discord_recorder_service_manager
            if recorder.is_recording_in_guild(guild.id) or self.context.is_shutting_down():
                await self.services.logging_service.info(
                    f"Skipping queued taunt {taunt.index} playback in guild {guild.id}"
                )
                return PlaybackResult(
                    success=False, index=taunt.index, channel_id=channel.id, skipped=True
                )

            voice_client = None
            try:
                voice_client = await BotUtils.connect_to_channel(guild, channel)
                await self.services.logging_service.info(
                    f"Playing taunt {taunt.index} in {channel.name} ({channel.id})"
                )
                await self._play_and_wait(voice_client, taunt.audio_path)
                result = PlaybackResult(success=True, index=taunt.index, channel_id=channel.id)
            except (discord.DiscordException, asyncio.TimeoutError, OSError) as e:
                result = PlaybackResult(
                    success=False,
                    index=taunt.index,
                    channel_id=channel.id,
                    error=f"{type(e).__name__}: {e}",
                )
                await self.services.logging_service.error(
                    f"Taunt {taunt.index} playback failed in channel {channel.id}: {result.error}"
                )
                await BotUtils.safe_reply(message, self.PLAYBACK_FAILED_REPLY)
            finally:
                if voice_client is not None:
                    if voice_client.is_playing():
                        voice_client.stop()
                    # A recording that started meanwhile now owns the connection
                    if not recorder.is_recording_in_guild(guild.id):
                        await BotUtils.disconnect_quietly(voice_client)

        return result

    async def _play_and_wait(self, voice_client: discord.VoiceClient, audio_path: str) -> None:
        """Play a file and wait for py-cord's after-callback."""
        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()

        def _resolve(error: Exception | None) -> None:
            if not finished.done():
                finished.set_result(error)

        def _after_playback(error: Exception | None) -> None:
            # Runs on py-cord's audio player thread
            loop.call_soon_threadsafe(_resolve, error)

        source = discord.FFmpegPCMAudio(audio_path, executable=self.ffmpeg_path)
        voice_client.play(source, after=_after_playback)

        error = await finished
        if error is not None:
            raise discord.ClientException(f"Audio player error: {error}")

    def _on_playback_done(self, task: asyncio.Task) -> None:
        self._playback_tasks.discard(task)
        if task.cancelled():
            logger.info(f"Playback task {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Playback task {task.get_name()} crashed: {error!r}")
            return
        result = task.result()
        logger.info(
            f"Playback task {task.get_name()} finished (success={result.success}, "
            f"skipped={result.skipped}, error={result.error})"
        )
