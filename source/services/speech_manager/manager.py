from __future__ import annotations

import asyncio
import wave
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import azure.cognitiveservices.speech as speechsdk

if TYPE_CHECKING:
    from source.context import Context

from source.services.manager import BaseSpeechServiceManager

# -------------------------------------------------------------- #
# Speech Constants
# -------------------------------------------------------------- #


class SpeechConstants:
    """Configuration constants for the Azure speech client."""

    DEFAULT_REGION = "eastus"
    DEFAULT_LANGUAGE = "en-US"

    # Must match the transcoder's WAV output
    SAMPLE_RATE = 16000
    BITS_PER_SAMPLE = 16
    CHANNELS = 1

    # 100 ms of 16 kHz 16-bit mono audio per push
    PUSH_CHUNK_FRAMES = 1600

    RECOGNIZED = "recognized"
    NO_MATCH = "no_match"
    CANCELED = "canceled"
    ERROR = "error"


@dataclass
class TranscriptResult:
    """Single best-effort hypothesis from one recognition pass."""

    text: str
    status: str = SpeechConstants.RECOGNIZED
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Payload persisted to text.json."""
        data: dict[str, Any] = {"text": self.text}
        if self.error is not None:
            data["status"] = self.status
            data["error"] = self.error
        return data

    @classmethod
    def failure(cls, error: str, status: str = SpeechConstants.ERROR) -> TranscriptResult:
        return cls(text="", status=status, error=error)


# -------------------------------------------------------------- #
# Speech Manager Service
# -------------------------------------------------------------- #


class SpeechManagerService(BaseSpeechServiceManager):
    """Azure speech-to-text client doing one single-utterance pass per file."""

    def __init__(
        self,
        context: Context,
        subscription_key: str | None,
        region: str = SpeechConstants.DEFAULT_REGION,
        language: str = SpeechConstants.DEFAULT_LANGUAGE,
    ):
        super().__init__(context)
        self.subscription_key = subscription_key
        self.region = region
        self.language = language

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        if not self.subscription_key:
            await self.services.logging_service.warning(
                "BING_SPEECH_API_KEY is not set - recordings will be saved without transcripts"
            )

        await self.services.logging_service.info(
            f"SpeechManagerService initialized (region={self.region}, language={self.language})"
        )
        return True

    async def on_close(self):
        return True

    # -------------------------------------------------------------- #
    # Transcription Methods
    # -------------------------------------------------------------- #

    async def transcribe(self, wav_path: str) -> TranscriptResult:
        """
        Push a WAV file through the recognizer and return the best hypothesis.

        Args:
            wav_path: Mono 16 kHz 16-bit PCM WAV file

        Returns:
            TranscriptResult; failures are reported in its error field, never raised
        """
        if not self.subscription_key:
            return TranscriptResult.failure("Speech service key is not configured")

        await self.services.logging_service.info(f"Starting speech recognition for {wav_path}")

        loop = asyncio.get_running_loop()
        try:
            # The SDK call blocks until the service answers
            result = await loop.run_in_executor(None, self._recognize_once, wav_path)
        except (RuntimeError, OSError, EOFError, wave.Error) as e:
            result = TranscriptResult.failure(f"{type(e).__name__}: {e}")

        if result.success:
            await self.services.logging_service.info(
                f"Speech recognition finished for {wav_path} ({result.status}): {result.text!r}"
            )
        else:
            await self.services.logging_service.error(
                f"Speech recognition failed for {wav_path}: {result.error}"
            )
        return result

    def build_speech_config(self) -> speechsdk.SpeechConfig:
        speech_config = speechsdk.SpeechConfig(
            subscription=self.subscription_key, region=self.region
        )
        speech_config.speech_recognition_language = self.language
        return speech_config

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    def _recognize_once(self, wav_path: str) -> TranscriptResult:
        """Blocking recognition pass, run in an executor."""
        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=SpeechConstants.SAMPLE_RATE,
            bits_per_sample=SpeechConstants.BITS_PER_SAMPLE,
            channels=SpeechConstants.CHANNELS,
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        stream_closed = False

        try:
            audio_config = speechsdk.audio.AudioConfig(stream=push_stream)
            recognizer = speechsdk.SpeechRecognizer(
                speech_config=self.build_speech_config(), audio_config=audio_config
            )

            self._push_wav_samples(wav_path, push_stream)
            push_stream.close()
            stream_closed = True

            result = recognizer.recognize_once()
            return self._to_transcript(result)
        finally:
            if not stream_closed:
                push_stream.close()

    def _push_wav_samples(self, wav_path: str, push_stream) -> None:
        """Write the file's PCM frames (not its RIFF header) into the push stream."""
        with wave.open(wav_path, "rb") as wav_file:
            if (
                wav_file.getframerate() != SpeechConstants.SAMPLE_RATE
                or wav_file.getnchannels() != SpeechConstants.CHANNELS
                or wav_file.getsampwidth() * 8 != SpeechConstants.BITS_PER_SAMPLE
            ):
                raise wave.Error(
                    f"Unexpected WAV layout {wav_file.getframerate()} Hz, "
                    f"{wav_file.getnchannels()} ch, {wav_file.getsampwidth() * 8} bit"
                )

            while True:
                frames = wav_file.readframes(SpeechConstants.PUSH_CHUNK_FRAMES)
                if not frames:
                    break
                push_stream.write(frames)

    def _to_transcript(self, result) -> TranscriptResult:
        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            return TranscriptResult(text=result.text or "")

        if result.reason == speechsdk.ResultReason.NoMatch:
            # Silence or unintelligible speech is a valid, empty transcript
            return TranscriptResult(text="", status=SpeechConstants.NO_MATCH)

        if result.reason == speechsdk.ResultReason.Canceled:
            details = result.cancellation_details
            error = f"Recognition canceled: {details.reason}"
            if details.reason == speechsdk.CancellationReason.Error and details.error_details:
                error = f"{error} ({details.error_details})"
            return TranscriptResult.failure(error, status=SpeechConstants.CANCELED)

        return TranscriptResult.failure(f"Unexpected recognition result: {result.reason}")
