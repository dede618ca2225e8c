import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from source.context import Context

from source.services.logger import AsyncLoggingService
from source.services.manager import ServicesManager
from source.services.speech_manager.manager import SpeechConstants

# prefer a project-local .env.local file, then fallback to the process environment
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for the Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    context: "Context",
    recordings_path: str,
    taunt_catalog_path: str,
    taunt_audio_path: str,
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
) -> ServicesManager:
    """Construct the services manager from paths and environment.

    Args:
        context: Context instance shared with the bot and cogs
        recordings_path: Root folder for recording sessions
        taunt_catalog_path: JSON array of taunt strings
        taunt_audio_path: Folder holding <index>.ogg taunt clips
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files (default: True)
    """

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        min_level=os.getenv("LOG_LEVEL") or "DEBUG",
    )

    # -------------------------------------------------------------- #
    # Storage Setup
    # -------------------------------------------------------------- #

    from source.services.file_manager.manager import FileManagerService
    from source.services.taunt_catalog.manager import TauntCatalogService

    file_service_manager = FileManagerService(context=context, storage_path=recordings_path)
    taunt_catalog_service = TauntCatalogService(
        context=context, catalog_path=taunt_catalog_path, audio_path=taunt_audio_path
    )

    # -------------------------------------------------------------- #
    # External Tools Setup
    # -------------------------------------------------------------- #

    from source.services.ffmpeg_manager.manager import FFmpegManagerService
    from source.services.speech_manager.manager import SpeechManagerService

    ffmpeg_path = os.getenv("FFMPEG_PATH") or "ffmpeg"
    ffmpeg_service_manager = FFmpegManagerService(context=context, ffmpeg_path=ffmpeg_path)

    speech_service_manager = SpeechManagerService(
        context=context,
        subscription_key=os.getenv("BING_SPEECH_API_KEY"),
        region=os.getenv("SPEECH_SERVICE_REGION") or SpeechConstants.DEFAULT_REGION,
        language=os.getenv("SPEECH_RECOGNITION_LANGUAGE") or SpeechConstants.DEFAULT_LANGUAGE,
    )

    # -------------------------------------------------------------- #
    # Discord Services Setup
    # -------------------------------------------------------------- #

    from source.services.discord_recorder.manager import DiscordRecorderManagerService
    from source.services.taunt_responder.manager import TauntResponderService

    taunt_responder_service = TauntResponderService(context=context, ffmpeg_path=ffmpeg_path)
    discord_recorder_service_manager = DiscordRecorderManagerService(
        context=context, recordings_path=recordings_path
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        file_service_manager=file_service_manager,
        taunt_catalog_service=taunt_catalog_service,
        ffmpeg_service_manager=ffmpeg_service_manager,
        speech_service_manager=speech_service_manager,
        taunt_responder_service=taunt_responder_service,
        discord_recorder_service_manager=discord_recorder_service_manager,
    )
