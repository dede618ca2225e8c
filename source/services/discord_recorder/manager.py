from __future__ import annotations

import asyncio
import logging
import os
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from source.context import Context
    from source.services.manager import ServicesManager

from source.services.discord_recorder.sink import MemberAudioSink
from source.services.manager import BaseDiscordRecorderServiceManager
from source.services.speech_manager.manager import TranscriptResult
from source.utils import (
    BotUtils,
    format_session_folder_name,
    generate_16_char_uuid,
    get_current_timestamp_utc,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class DiscordRecorderConstants:
    """Configuration constants for Discord recording."""

    # Discord audio format (from Pycord's decoder)
    DISCORD_SAMPLE_RATE = 48000  # 48 kHz
    DISCORD_BITS_PER_SAMPLE = 16  # 16-bit signed PCM
    DISCORD_CHANNELS = 2  # Stereo

    # Fixed capture window, measured from the join acknowledgement
    RECORD_SECONDS = 10

    # How long to wait for Pycord to run sink cleanup after stop_recording()
    SINK_FINISH_TIMEOUT_SECONDS = 5.0

    AUDIO_FILENAME = "audio.wav"
    TRANSCRIPT_FILENAME = "text.json"

    # Replies
    ACK_REPLY = "recording for ten seconds ..."
    BUSY_REPLY = "A recording is already in progress."
    NOT_IN_VOICE_REPLY = "You need to be in a voice channel to record."
    JOIN_FAILED_REPLY = "Couldn't join your voice channel."
    RECORDING_FAILED_REPLY = "Recording failed, no transcript was produced."


class RecordingState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    RECORDING = "recording"
    TRANSCODING = "transcoding"
    TRANSCRIBING = "transcribing"


# States in which the session owns the guild's voice connection
VOICE_HOLDING_STATES = (RecordingState.JOINING, RecordingState.RECORDING)


@dataclass
class RecordingSession:
    """One record command, from acceptance until its transcript file is written."""

    session_id: str
    started_at: datetime
    output_folder: str
    audio_file: str
    transcript_file: str
    guild_id: int | None
    requester_id: int
    channel_id: int | None = None
    state: RecordingState = RecordingState.IDLE
    task: asyncio.Task | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "output_folder": self.output_folder,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "requester_id": self.requester_id,
            "state": self.state.value,
        }


class SessionRegistry:
    """
    Process-wide recording slot: either idle or active with one session id.

    All methods are synchronous so a check-and-claim never spans an await.
    """

    def __init__(self):
        self._active_session_id: str | None = None

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    def is_idle(self) -> bool:
        return self._active_session_id is None

    def try_activate(self, session_id: str) -> bool:
        """Claim the slot. Returns False if another session already holds it."""
        if self._active_session_id is not None:
            return False
        self._active_session_id = session_id
        return True

    def release(self, session_id: str) -> None:
        """Free the slot if `session_id` is the holder."""
        if self._active_session_id == session_id:
            self._active_session_id = None


# -------------------------------------------------------------- #
# Discord Recorder Service Manager
# -------------------------------------------------------------- #


class DiscordRecorderManagerService(BaseDiscordRecorderServiceManager):
    """
    Manager for Discord Recorder Service.

    Runs at most one recording session at a time:
    join → record one member for a fixed window → leave → transcode → transcribe → persist.
    """

    def __init__(self, context: Context, recordings_path: str):
        super().__init__(context)

        # Session paths are handed to ffmpeg as-is, so keep them absolute
        self.recordings_path = os.path.abspath(recordings_path)
        self.registry = SessionRegistry()
        self._active_session: RecordingSession | None = None

    # -------------------------------------------------------------- #
    # Discord Recorder Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services_manager: ServicesManager) -> None:
        """Initialize the Discord Recorder Service Manager."""
        await super().on_start(services_manager)
        await self.services.logging_service.info(
            f"Discord Recorder Service Manager started (recordings path: {self.recordings_path})"
        )

    async def on_close(self) -> bool:
        """Stop the Discord Recorder Service Manager."""
        await self.cancel_active_session()
        await self.services.logging_service.info("Discord Recorder Service Manager stopped")
        return True

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    async def start_session(self, message: discord.Message) -> RecordingSession | None:
        """
        Accept a record command and spawn its session task.

        Args:
            message: The `record` chat message; its author is the member recorded

        Returns:
            The new session, or None if the request was rejected
        """
        if self.context.is_shutting_down():
            await self.services.logging_service.info(
                f"Ignoring record request from {message.author.id}: shutting down"
            )
            return None

        session = self._create_session(message)

        # Claim the slot before the first await
        if not self.registry.try_activate(session.session_id):
            await self.services.logging_service.info(
                f"Rejected record request from {message.author.id}: session "
                f"{self.registry.active_session_id} is active"
            )
            await BotUtils.safe_reply(message, DiscordRecorderConstants.BUSY_REPLY)
            return None

        self._active_session = session
        session.state = RecordingState.JOINING
        session.task = asyncio.create_task(
            self._run_session(session, message), name=f"recording-session-{session.session_id}"
        )
        session.task.add_done_callback(self._on_session_done)

        await self.services.logging_service.info(
            f"Accepted record request from {message.author.id}: session {session.session_id} "
            f"-> {session.output_folder}"
        )
        return session

    def is_recording(self) -> bool:
        return not self.registry.is_idle()

    def get_active_session(self) -> RecordingSession | None:
        return self._active_session

    def is_recording_in_guild(self, guild_id: int) -> bool:
        session = self._active_session
        return (
            session is not None
            and session.guild_id == guild_id
            and session.state in VOICE_HOLDING_STATES
        )

    async def wait_for_active_session(self) -> None:
        session = self._active_session
        if session is not None and session.task is not None:
            # asyncio.wait does not cancel the task when the caller times out
            await asyncio.wait({session.task})

    async def cancel_active_session(self) -> None:
        session = self._active_session
        if session is None or session.task is None or session.task.done():
            return

        await self.services.logging_service.warning(
            f"Cancelling recording session {session.session_id} in state {session.state.value}"
        )
        session.task.cancel()
        with suppress(asyncio.CancelledError):
            await session.task

    # -------------------------------------------------------------- #
    # Session Pipeline
    # -------------------------------------------------------------- #

    async def _run_session(
        self, session: RecordingSession, message: discord.Message
    ) -> TranscriptResult | None:
        """Drive one session through the state machine. Always frees the registry."""
        voice_client: discord.VoiceClient | None = None
        stream = None

        try:
            channel = BotUtils.find_member_voice_channel(message.author)
            if channel is None or message.guild is None:
                await self.services.logging_service.info(
                    f"Session {session.session_id}: requester {session.requester_id} "
                    f"is not in a voice channel"
                )
                await BotUtils.safe_reply(message, DiscordRecorderConstants.NOT_IN_VOICE_REPLY)
                return None

            session.channel_id = channel.id
            await self.services.file_service_manager.ensure_dir(session.output_folder)

            # JOINING
            try:
                voice_client = await BotUtils.connect_to_channel(message.guild, channel)
            except (discord.DiscordException, asyncio.TimeoutError) as e:
                await self.services.logging_service.error(
                    f"Session {session.session_id}: failed to join channel {channel.id}: "
                    f"{type(e).__name__}: {e}"
                )
                await BotUtils.safe_reply(message, DiscordRecorderConstants.JOIN_FAILED_REPLY)
                return None

            # RECORDING
            session.state = RecordingState.RECORDING
            await BotUtils.safe_reply(message, DiscordRecorderConstants.ACK_REPLY)

            stream = await self.services.ffmpeg_service_manager.create_recording_transcode_stream(
                session.audio_file
            )
            if stream.get_stream_status()["running"]:
                await self._record_window(session, voice_client, stream)
            else:
                await BotUtils.disconnect_quietly(voice_client)

            # TRANSCODING
            session.state = RecordingState.TRANSCODING
            transcode = await self.services.ffmpeg_service_manager.finish_stream(stream)
            stream = None

            if transcode.success:
                # TRANSCRIBING
                session.state = RecordingState.TRANSCRIBING
                transcript = await self.services.speech_service_manager.transcribe(
                    transcode.output_path
                )
            else:
                transcript = TranscriptResult.failure(f"Transcoding failed: {transcode.error}")

            await self._write_transcript(session, transcript)

            if not transcript.success:
                await BotUtils.safe_reply(
                    message, DiscordRecorderConstants.RECORDING_FAILED_REPLY
                )
            return transcript

        except OSError as e:
            await self.services.logging_service.error(
                f"Session {session.session_id} failed: {type(e).__name__}: {e}", exc_info=True
            )
            await BotUtils.safe_reply(message, DiscordRecorderConstants.RECORDING_FAILED_REPLY)
            return None

        finally:
            try:
                if stream is not None:
                    await self.services.ffmpeg_service_manager.finish_stream(stream)
                await BotUtils.disconnect_quietly(voice_client)
            finally:
                self._release_session(session)

            await self.services.logging_service.info(
                f"Session {session.session_id} ended, recorder is idle"
            )

    async def _record_window(
        self, session: RecordingSession, voice_client: discord.VoiceClient, stream
    ) -> None:
        """Capture the requester for RECORD_SECONDS, then stop receive and leave."""
        sink = MemberAudioSink(session.requester_id, stream)
        sink_finished = asyncio.Event()

        try:
            voice_client.start_recording(
                sink, self._on_recording_finished, sink_finished, sync_start=False
            )
        except discord.DiscordException as e:
            await self.services.logging_service.error(
                f"Session {session.session_id}: could not start voice receive: "
                f"{type(e).__name__}: {e}"
            )
            await BotUtils.disconnect_quietly(voice_client)
            return

        try:
            await self.services.logging_service.info(
                f"Session {session.session_id}: recording member {session.requester_id} "
                f"for {DiscordRecorderConstants.RECORD_SECONDS}s"
            )
            await asyncio.sleep(DiscordRecorderConstants.RECORD_SECONDS)
        finally:
            # Hard stop: end voice receive, which runs sink cleanup, then leave
            try:
                voice_client.stop_recording()
            except discord.DiscordException as e:
                # RecordingException when receive already ended on its own
                await self.services.logging_service.warning(
                    f"Session {session.session_id}: stop_recording failed: "
                    f"{type(e).__name__}: {e}"
                )
            try:
                await asyncio.wait_for(
                    sink_finished.wait(),
                    timeout=DiscordRecorderConstants.SINK_FINISH_TIMEOUT_SECONDS,
                )
            except asyncio.TimeoutError:
                await self.services.logging_service.warning(
                    f"Session {session.session_id}: voice receive did not finish within "
                    f"{DiscordRecorderConstants.SINK_FINISH_TIMEOUT_SECONDS}s"
                )
            await BotUtils.disconnect_quietly(voice_client)

        await self.services.logging_service.info(
            f"Session {session.session_id}: captured {sink.bytes_forwarded} bytes, "
            f"dropped {sink.frames_dropped} frames from other speakers"
        )

    def _release_session(self, session: RecordingSession) -> None:
        """Return the recorder to IDLE. Synchronous so it cannot be interrupted."""
        session.state = RecordingState.IDLE
        if self._active_session is session:
            self._active_session = None
        self.registry.release(session.session_id)

    def _on_session_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info(f"Recording task {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Recording task {task.get_name()} crashed: {error!r}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def _on_recording_finished(
        self, sink: MemberAudioSink, sink_finished: asyncio.Event
    ) -> None:
        """Pycord recording callback, scheduled on the loop after sink cleanup."""
        sink_finished.set()

    async def _write_transcript(
        self, session: RecordingSession, transcript: TranscriptResult
    ) -> None:
        try:
            await self.services.file_service_manager.save_json(
                session.transcript_file, transcript.to_dict()
            )
        except OSError as e:
            await self.services.logging_service.error(
                f"Session {session.session_id}: failed to write {session.transcript_file}: {e}"
            )

    def _create_session(self, message: discord.Message) -> RecordingSession:
        started_at = get_current_timestamp_utc()
        output_folder = os.path.join(self.recordings_path, format_session_folder_name(started_at))
        return RecordingSession(
            session_id=generate_16_char_uuid(),
            started_at=started_at,
            output_folder=output_folder,
            audio_file=os.path.join(output_folder, DiscordRecorderConstants.AUDIO_FILENAME),
            transcript_file=os.path.join(
                output_folder, DiscordRecorderConstants.TRANSCRIPT_FILENAME
            ),
            guild_id=message.guild.id if message.guild else None,
            requester_id=message.author.id,
        )
