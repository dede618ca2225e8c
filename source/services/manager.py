from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import discord

    from source.context import Context
    from source.services.discord_recorder.manager import RecordingSession
    from source.services.ffmpeg_manager.manager import FFmpegConversionStream, TranscodeResult
    from source.services.speech_manager.manager import TranscriptResult
    from source.services.taunt_catalog.manager import Taunt


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        file_service_manager: BaseFileServiceManager,
        taunt_catalog_service: BaseTauntCatalogServiceManager,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        speech_service_manager: BaseSpeechServiceManager,
        taunt_responder_service: BaseTauntResponderServiceManager,
        discord_recorder_service_manager: BaseDiscordRecorderServiceManager,
    ):
        self.context = context

        self.logging_service = logging_service

        # Storage
        self.file_service_manager = file_service_manager
        self.taunt_catalog_service = taunt_catalog_service

        # External tools and APIs
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.speech_service_manager = speech_service_manager

        # Discord facing services
        self.taunt_responder_service = taunt_responder_service
        self.discord_recorder_service_manager = discord_recorder_service_manager

    async def initialize_all(self) -> None:
        """Initialize all service managers in dependency order."""

        # Logging
        await self.logging_service.on_start(self)

        # Storage
        await self.file_service_manager.on_start(self)
        await self.taunt_catalog_service.on_start(self)

        # External tools and APIs
        await self.ffmpeg_service_manager.on_start(self)
        await self.speech_service_manager.on_start(self)

        # Discord facing services
        await self.taunt_responder_service.on_start(self)
        await self.discord_recorder_service_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 30.0) -> None:
        """
        Gracefully shutdown all service managers.

        1. No new sessions or playbacks are accepted
        2. The active recording session is finished (or cancelled on timeout)
        3. Running taunt playbacks are awaited
        4. Services are closed in reverse order and logs are flushed

        Args:
            timeout: Maximum time in seconds to wait for each draining phase
        """
        import asyncio

        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("Shutdown flag set - no new operations will start")

        # Phase 1: active recording session
        try:
            await asyncio.wait_for(
                self.discord_recorder_service_manager.wait_for_active_session(), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self.logging_service.warning(
                f"Recording session did not finish within {timeout}s, cancelling it"
            )
            await self.discord_recorder_service_manager.cancel_active_session()

        # Phase 2: taunt playbacks
        try:
            await asyncio.wait_for(
                self.taunt_responder_service.wait_for_playbacks(), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self.logging_service.warning(
                f"Taunt playbacks did not finish within {timeout}s, cancelling them"
            )
            await self.taunt_responder_service.cancel_playbacks()

        # Phase 3: close services (reverse of start order)
        for service in (
            self.discord_recorder_service_manager,
            self.taunt_responder_service,
            self.speech_service_manager,
            self.ffmpeg_service_manager,
            self.taunt_catalog_service,
            self.file_service_manager,
        ):
            try:
                await service.on_close()
            except Exception as e:
                await self.logging_service.error(
                    f"Error closing {type(service).__name__}: {type(e).__name__}: {e}"
                )

        await self.logging_service.info("All services shut down")
        await self.logging_service.info("=" * 60)

        # Logging goes last so everything above is flushed
        await self.logging_service.on_close()


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.services: ServicesManager | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Base class for the async logging service."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message at the given level."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message."""
        pass


class BaseFileServiceManager(Manager):
    """Base class for file service managers."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the storage path."""
        pass

    @abstractmethod
    async def ensure_dir(self, dirpath: str) -> str:
        """Create a directory (and parents) if missing."""
        pass

    @abstractmethod
    async def ensure_parent_dir(self, filepath: str) -> None:
        """Create the parent directory of a file if missing."""
        pass

    @abstractmethod
    async def save_json(self, filepath: str, data: Any) -> str:
        """Write pretty-printed JSON, replacing any existing file."""
        pass

    @abstractmethod
    async def read_json(self, filepath: str) -> Any:
        """Read and decode a JSON file."""
        pass

    @abstractmethod
    async def file_exists(self, filepath: str) -> bool:
        """Check whether a file exists."""
        pass


class BaseTauntCatalogServiceManager(Manager):
    """Base class for the taunt catalog."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def __len__(self) -> int:
        pass

    @abstractmethod
    def get_taunt(self, index: int) -> Taunt | None:
        """Get a taunt by 1-based index, None when out of bounds."""
        pass

    @abstractmethod
    def list_taunts(self) -> list[Taunt]:
        """Get all taunts in catalog order."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Base class for FFmpeg service managers."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def create_recording_transcode_stream(self, output_file: str) -> FFmpegConversionStream:
        """Create a streaming raw PCM to speech WAV transcoder."""
        pass

    @abstractmethod
    async def finish_stream(self, stream: FFmpegConversionStream) -> TranscodeResult:
        """Close a transcoder and return its result."""
        pass


class BaseSpeechServiceManager(Manager):
    """Base class for speech-to-text service managers."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def transcribe(self, wav_path: str) -> TranscriptResult:
        """Run one recognition pass over a WAV file."""
        pass


class BaseTauntResponderServiceManager(Manager):
    """Base class for the taunt responder."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def say_taunt(self, message: discord.Message, index: int) -> bool:
        """Reply with a taunt and start voice playback when possible."""
        pass

    @abstractmethod
    async def wait_for_playbacks(self) -> None:
        """Wait for every running playback to finish."""
        pass

    @abstractmethod
    async def cancel_playbacks(self) -> None:
        """Cancel every running playback."""
        pass


class BaseDiscordRecorderServiceManager(Manager):
    """Base class for the voice recorder."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def start_session(self, message: discord.Message) -> RecordingSession | None:
        """Start a recording session for the message author."""
        pass

    @abstractmethod
    def is_recording(self) -> bool:
        """Check whether a session is active."""
        pass

    @abstractmethod
    def get_active_session(self) -> RecordingSession | None:
        """Get the active session, if any."""
        pass

    @abstractmethod
    def is_recording_in_guild(self, guild_id: int) -> bool:
        """Check whether the active session holds this guild's voice connection."""
        pass

    @abstractmethod
    async def wait_for_active_session(self) -> None:
        """Wait until the active session (if any) has finished."""
        pass

    @abstractmethod
    async def cancel_active_session(self) -> None:
        """Cancel the active session (if any)."""
        pass
