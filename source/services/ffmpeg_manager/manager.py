import asyncio
import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from source.context import Context

from source.services.manager import BaseFFmpegServiceManager

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# FFmpeg Constants
# -------------------------------------------------------------- #


class TranscoderConstants:
    """Input and output layout for the recording transcoder."""

    # Discord hands us 48 kHz stereo s16le frames. Read as s32le, each 32-bit word
    # is one interleaved L/R pair, so ffmpeg sees a single 48 kHz channel.
    INPUT_FORMAT = "s32le"
    INPUT_SAMPLE_RATE = 48000
    INPUT_CHANNELS = 1

    # Speech recognition input: mono 16 kHz 16-bit PCM WAV
    OUTPUT_FORMAT = "wav"
    OUTPUT_CODEC = "pcm_s16le"
    OUTPUT_SAMPLE_RATE = 16000
    OUTPUT_CHANNELS = 1

    WAV_HEADER_SIZE = 44

    VALIDATE_TIMEOUT_SECONDS = 5
    CLOSE_TIMEOUT_SECONDS = 10.0


@dataclass
class TranscodeResult:
    """Outcome of a streaming transcode."""

    success: bool
    output_path: str
    bytes_written: int = 0
    returncode: int | None = None
    error: str | None = None


# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    def __init__(self, ffmpeg_service_manager: BaseFFmpegServiceManager | None, ffmpeg_path: str):
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.ffmpeg_path = ffmpeg_path

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        [self.ffmpeg_path, "-version"],
                        capture_output=True,
                        timeout=TranscoderConstants.VALIDATE_TIMEOUT_SECONDS,
                        text=True,
                    ),
                ),
                timeout=TranscoderConstants.VALIDATE_TIMEOUT_SECONDS + 1,
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False

    # -------------------------------------------------------------- #
    # Command Building
    # -------------------------------------------------------------- #

    def build_stream_command(
        self, output_file: str, input_options: dict, output_options: dict
    ) -> list[str]:
        """
        Build an ffmpeg command that reads raw audio from stdin.

        Args:
            output_file: Path of the file ffmpeg writes
            input_options: Options placed BEFORE -i (they describe the raw input)
            output_options: Options placed after -i (e.g. {'-ar': '16000', '-y': None})

        Returns:
            The argv list
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error"]

        # Format options MUST come BEFORE -i for raw input
        for key, value in input_options.items():
            cmd.append(key)
            if value is not None:
                cmd.append(str(value))

        cmd.extend(["-i", "-"])

        for key, value in output_options.items():
            cmd.append(key)
            if value is not None:
                cmd.append(str(value))

        cmd.append(output_file)
        return cmd

    def create_speech_wav_stream_process(self, output_file: str) -> "FFmpegConversionStream":
        """Create a conversion stream turning captured voice PCM into a speech WAV."""
        input_options = {
            "-f": TranscoderConstants.INPUT_FORMAT,
            "-ar": TranscoderConstants.INPUT_SAMPLE_RATE,
            "-ac": TranscoderConstants.INPUT_CHANNELS,
        }
        output_options = {
            "-ar": TranscoderConstants.OUTPUT_SAMPLE_RATE,
            "-ac": TranscoderConstants.OUTPUT_CHANNELS,
            "-acodec": TranscoderConstants.OUTPUT_CODEC,
            "-f": TranscoderConstants.OUTPUT_FORMAT,
            "-y": None,
        }
        return FFmpegConversionStream(
            self,
            command=self.build_stream_command(output_file, input_options, output_options),
            output_file=output_file,
        )


# -------------------------------------------------------------- #
# FFmpeg Conversion Stream
# -------------------------------------------------------------- #


class FFmpegConversionStream:
    """
    One-shot ffmpeg process fed through stdin.

    push_to_stream is called from py-cord's decoder thread, start/close from the
    event loop. The stream cannot be restarted once closed.
    """

    def __init__(self, ffmpeg_handler: FFmpegHandler, command: list[str], output_file: str):
        self.ffmpeg_handler = ffmpeg_handler
        self.command = command
        self.output_file = output_file

        self.subprocess: subprocess.Popen | None = None
        self._is_running = False
        self._was_started = False
        self._bytes_processed = 0
        self._error: str | None = None
        self._write_lock = threading.Lock()

    # -------------------------------------------------------------- #
    # Streaming Methods
    # -------------------------------------------------------------- #

    def start_stream(self) -> bool:
        """
        Start the ffmpeg process.

        Returns:
            True if the process started, False otherwise (see get_stream_status)
        """
        if self._was_started:
            self._error = "Conversion stream cannot be restarted"
            return False
        self._was_started = True

        try:
            self.subprocess = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,  # Unbuffered
            )
            self._is_running = True
            return True
        except OSError as e:
            self._error = f"Failed to start ffmpeg: {e}"
            self._is_running = False
            return False

    def push_to_stream(self, data: bytes) -> None:
        """
        Push data to the FFmpeg input stream.

        Args:
            data: Raw PCM bytes to write to ffmpeg's stdin
        """
        with self._write_lock:
            if not (self.subprocess and self._is_running and self.subprocess.stdin):
                return
            try:
                self.subprocess.stdin.write(data)
                self._bytes_processed += len(data)
            except (BrokenPipeError, OSError, ValueError) as e:
                # ffmpeg died; keep the first error for the result
                self._is_running = False
                self._error = self._error or f"ffmpeg input pipe closed: {e}"
                logger.error(f"Transcoder input failed for {self.output_file}: {e}")

    async def close_stream(self) -> TranscodeResult:
        """
        End the input, wait for ffmpeg to finalize the file and report the outcome.

        Returns:
            TranscodeResult describing the finished transcode
        """
        if self.subprocess is None:
            return TranscodeResult(
                success=False,
                output_path=self.output_file,
                error=self._error or "Transcoder was never started",
            )

        with self._write_lock:
            self._is_running = False

        loop = asyncio.get_running_loop()
        logging_service = self._logging_service()
        stderr_data = b""

        try:
            # communicate() closes stdin, which is ffmpeg's end-of-input
            _, stderr_data = await asyncio.wait_for(
                loop.run_in_executor(None, self.subprocess.communicate),
                timeout=TranscoderConstants.CLOSE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            if self.subprocess.poll() is None:
                self.subprocess.kill()
                await loop.run_in_executor(None, self.subprocess.wait)
            self._error = self._error or (
                f"ffmpeg did not finish within {TranscoderConstants.CLOSE_TIMEOUT_SECONDS}s"
            )

        returncode = self.subprocess.returncode
        stderr_text = (stderr_data or b"").decode("utf-8", errors="replace").strip()

        if stderr_text and logging_service:
            await logging_service.error(f"FFmpeg STDERR ({self.output_file}):\n{stderr_text}")

        if returncode not in (0, None) and not self._error:
            self._error = f"ffmpeg exited with code {returncode}: {stderr_text[-500:]}"
        elif self._bytes_processed == 0 and not self._error:
            self._error = "No audio was received"
        elif not self._error and not await self._has_audio_payload():
            self._error = "ffmpeg produced no audio samples"

        result = TranscodeResult(
            success=self._error is None,
            output_path=self.output_file,
            bytes_written=self._bytes_processed,
            returncode=returncode,
            error=self._error,
        )

        if logging_service:
            if result.success:
                await logging_service.info(
                    f"FFmpeg transcode completed: {self._bytes_processed} bytes -> {self.output_file}"
                )
            else:
                await logging_service.error(
                    f"FFmpeg transcode failed for {self.output_file}: {result.error}"
                )

        self.subprocess = None
        return result

    def get_stream_status(self) -> dict:
        """
        Get the current status of the FFmpeg stream.

        Returns:
            Dictionary with status information including bytes processed
        """
        if self.subprocess is None:
            return {
                "running": False,
                "pid": None,
                "returncode": None,
                "bytes_processed": self._bytes_processed,
                "error": self._error,
            }

        returncode = self.subprocess.poll()
        return {
            "running": self._is_running and returncode is None,
            "pid": self.subprocess.pid,
            "returncode": returncode,
            "bytes_processed": self._bytes_processed,
            "error": self._error,
        }

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    def _logging_service(self):
        manager = self.ffmpeg_handler.ffmpeg_service_manager
        if manager is None or manager.services is None:
            return None
        return manager.services.logging_service

    async def _has_audio_payload(self) -> bool:
        loop = asyncio.get_running_loop()
        try:
            size = await loop.run_in_executor(None, os.path.getsize, self.output_file)
        except OSError:
            return False
        return size > TranscoderConstants.WAV_HEADER_SIZE


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Service for managing FFmpeg operations."""

    def __init__(self, context: "Context", ffmpeg_path: str):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path
        self.handler = FFmpegHandler(self, ffmpeg_path)
        self._open_streams: set[FFmpegConversionStream] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("FFmpegManagerService initialized")

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(
                f"FFmpeg validated at path: {self.ffmpeg_path}"
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}"
            )
        return True

    async def on_close(self):
        # Finalize anything a cancelled session left behind
        for stream in list(self._open_streams):
            await stream.close_stream()
        self._open_streams.clear()
        return True

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    async def create_recording_transcode_stream(self, output_file: str) -> FFmpegConversionStream:
        """
        Create and start a transcoder writing a speech WAV to output_file.

        The returned stream may have failed to start; its close_stream() result
        carries the error in that case.
        """
        await self.services.file_service_manager.ensure_parent_dir(output_file)

        stream = self.handler.create_speech_wav_stream_process(output_file)
        if stream.start_stream():
            self._open_streams.add(stream)
            await self.services.logging_service.info(
                f"Started FFmpeg transcode stream -> {output_file} "
                f"(pid {stream.get_stream_status()['pid']})"
            )
        else:
            await self.services.logging_service.error(
                f"Failed to start FFmpeg transcode stream -> {output_file}: "
                f"{stream.get_stream_status()['error']}"
            )
        return stream

    async def finish_stream(self, stream: FFmpegConversionStream) -> TranscodeResult:
        """Close a stream created by this service and return its result."""
        self._open_streams.discard(stream)
        return await stream.close_stream()
