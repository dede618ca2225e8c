"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import json
import shutil
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


TEST_TAUNTS = ["Nice try!", "Too slow!"]


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


@pytest.fixture
def ffmpeg_path() -> str:
    """Path of a real ffmpeg executable; skips the test when none is installed."""
    path = shutil.which("ffmpeg")
    if path is None:
        pytest.skip("ffmpeg is not installed")
    return path


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


@pytest.fixture
def mock_discord_bot() -> MagicMock:
    """Create a mock Discord bot instance."""
    bot = MagicMock()
    bot.user = MagicMock()
    bot.user.name = "TestBot"
    bot.user.id = 123456789
    bot.guilds = []
    return bot


@pytest.fixture
def mock_discord_context() -> MagicMock:
    """Create a mock Discord application context (py-cord)."""
    ctx = MagicMock()
    ctx.author = MagicMock()
    ctx.author.name = "TestUser"
    ctx.author.id = 987654321
    ctx.author.voice = None
    ctx.guild = MagicMock()
    ctx.guild.id = 111222333
    ctx.guild.name = "Test Guild"
    ctx.defer = AsyncMock()
    ctx.respond = AsyncMock()
    ctx.followup = MagicMock()
    ctx.followup.send = AsyncMock()
    return ctx


@pytest.fixture
def mock_voice_client() -> MagicMock:
    """Create a mock connected voice client."""
    voice_client = MagicMock(spec=discord.VoiceClient)
    voice_client.is_connected.return_value = True
    voice_client.is_playing.return_value = False
    voice_client.disconnect = AsyncMock()
    voice_client.move_to = AsyncMock()
    return voice_client


@pytest.fixture
def mock_voice_channel(mock_voice_client: MagicMock) -> MagicMock:
    """Create a mock Discord voice channel whose connect() yields mock_voice_client."""
    channel = MagicMock()
    channel.id = 444555666
    channel.name = "Test Voice Channel"
    channel.connect = AsyncMock(return_value=mock_voice_client)
    mock_voice_client.channel = channel
    return channel


@pytest.fixture
def make_message(mock_voice_channel: MagicMock):
    """
    Factory for mock chat messages.

    Usage:
        message = make_message("1", in_voice=True)
    """

    def _make(content: str, in_voice: bool = False, author_id: int = 987654321, bot=False):
        message = MagicMock()
        message.id = 555000111
        message.content = content
        message.reply = AsyncMock()
        message.channel = MagicMock()
        message.channel.id = 777888999
        message.author = MagicMock()
        message.author.id = author_id
        message.author.bot = bot
        message.guild = MagicMock()
        message.guild.id = 111222333
        message.guild.voice_client = None
        if in_voice:
            message.author.voice = MagicMock()
            message.author.voice.channel = mock_voice_channel
        else:
            message.author.voice = None
        return message

    return _make


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def mock_logging_service() -> MagicMock:
    """Logging service whose methods are awaitable no-ops."""
    logging_service = MagicMock()
    for name in ("log", "debug", "info", "warning", "error", "critical"):
        setattr(logging_service, name, AsyncMock())
    return logging_service


@pytest.fixture
def context(mock_discord_bot: MagicMock):
    """Real Context wired to a mock bot."""
    from source.context import Context

    context = Context()
    context.set_bot(mock_discord_bot)
    return context


@pytest.fixture
def mock_services(context, mock_logging_service: MagicMock) -> MagicMock:
    """ServicesManager stand-in with a mock logger; tests attach the services they need."""
    services = MagicMock()
    services.context = context
    services.logging_service = mock_logging_service
    context.set_services_manager(services)
    return services


@pytest.fixture
def taunt_files(tmp_path):
    """Write a two-entry catalog and a clip for taunt 1 only."""
    catalog_path = tmp_path / "taunts.json"
    catalog_path.write_text(json.dumps(TEST_TAUNTS), encoding="utf-8")

    audio_dir = tmp_path / "audio"
    audio_dir.mkdir()
    (audio_dir / "1.ogg").write_bytes(b"OggS")

    return str(catalog_path), str(audio_dir)


@pytest.fixture
async def services_manager(
    tmp_path, shared_test_log_file, taunt_files, mock_discord_bot, monkeypatch
):
    """Real services built through construct_services_manager on tmp storage."""
    from source.context import Context
    from source.services.constructor import construct_services_manager

    monkeypatch.delenv("BING_SPEECH_API_KEY", raising=False)

    context = Context()
    context.set_bot(mock_discord_bot)

    catalog_path, audio_dir = taunt_files
    services_manager = construct_services_manager(
        context=context,
        recordings_path=str(tmp_path / "recordings"),
        taunt_catalog_path=catalog_path,
        taunt_audio_path=audio_dir,
        log_file=shared_test_log_file,
        use_timestamp_logs=False,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    yield services_manager

    # Cleanup
    await services_manager.shutdown_all(timeout=5.0)
