"""
Unit tests for the chat command dispatcher (cogs.taunts).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cogs.taunts import CommandKind, Taunts, classify_message
from source.services.taunt_catalog.manager import Taunt


@pytest.mark.unit
class TestClassifyMessage:
    @pytest.mark.parametrize("content", ["record", "  record  ", "record\n"])
    def test_record(self, content):
        assert classify_message(content) == (CommandKind.RECORD, None)

    @pytest.mark.parametrize("content, index", [("1", 1), (" 3 ", 3), ("-2", -2)])
    def test_taunt(self, content, index):
        assert classify_message(content) == (CommandKind.TAUNT, index)

    @pytest.mark.parametrize("content", ["", "0", "Record", "record now", "hello", "1.0"])
    def test_nothing(self, content):
        assert classify_message(content) == (CommandKind.NONE, None)


@pytest.fixture
def taunts_cog(context, mock_services):
    mock_services.discord_recorder_service_manager.start_session = AsyncMock()
    mock_services.taunt_responder_service.say_taunt = AsyncMock(return_value=True)
    return Taunts(context)


@pytest.mark.unit
class TestTauntsCog:
    async def test_filter_skips_bots(self, taunts_cog, make_message):
        assert await taunts_cog.filter_message(make_message("1", bot=True)) is False
        assert await taunts_cog.filter_message(make_message("record", bot=True)) is False

    async def test_filter_skips_unrelated_messages(self, taunts_cog, make_message):
        assert await taunts_cog.filter_message(make_message("gg")) is False
        assert await taunts_cog.filter_message(make_message("1")) is True
        assert await taunts_cog.filter_message(make_message("record")) is True

    async def test_record_goes_to_recorder(self, taunts_cog, mock_services, make_message):
        message = make_message("record")

        assert await taunts_cog.handle_message(message) is True

        mock_services.discord_recorder_service_manager.start_session.assert_awaited_once_with(
            message
        )
        mock_services.taunt_responder_service.say_taunt.assert_not_awaited()

    async def test_number_goes_to_responder(self, taunts_cog, mock_services, make_message):
        message = make_message(" 2 ")

        await taunts_cog.handle_message(message)

        mock_services.taunt_responder_service.say_taunt.assert_awaited_once_with(message, 2)
        mock_services.discord_recorder_service_manager.start_session.assert_not_awaited()

    async def test_taunts_command_lists_catalog(
        self, taunts_cog, mock_services, mock_discord_context
    ):
        mock_services.taunt_catalog_service.list_taunts = MagicMock(
            return_value=[
                Taunt(index=1, text="Nice try!", audio_path="audio/1.ogg"),
                Taunt(index=2, text="Too slow!", audio_path="audio/2.ogg"),
            ]
        )

        await Taunts.taunts.callback(taunts_cog, mock_discord_context)

        embed = mock_discord_context.respond.await_args.kwargs["embed"]
        assert "**1** Nice try!" in embed.description
        assert "**2** Too slow!" in embed.description

    async def test_taunts_command_empty_catalog(
        self, taunts_cog, mock_services, mock_discord_context
    ):
        mock_services.taunt_catalog_service.list_taunts = MagicMock(return_value=[])

        await Taunts.taunts.callback(taunts_cog, mock_discord_context)

        mock_discord_context.respond.assert_awaited_once_with(
            "No taunts are loaded.", ephemeral=True
        )
