import json
import os

import pytest

from source.services.taunt_catalog.manager import TauntCatalogError, TauntCatalogService

TEST_TAUNTS = ["Nice try!", "Too slow!"]


@pytest.mark.unit
class TestTauntCatalogService:
    """Test taunt catalog loading and lookup."""

    @pytest.fixture
    async def catalog(self, context, mock_services, taunt_files):
        catalog_path, audio_dir = taunt_files
        service = TauntCatalogService(context, catalog_path=catalog_path, audio_path=audio_dir)
        await service.on_start(mock_services)
        return service

    async def test_loads_in_order(self, catalog, taunt_files):
        _, audio_dir = taunt_files

        assert len(catalog) == len(TEST_TAUNTS)
        for i, text in enumerate(TEST_TAUNTS, start=1):
            taunt = catalog.get_taunt(i)
            assert taunt.index == i
            assert taunt.text == text
            assert taunt.audio_path == os.path.join(audio_dir, f"{i}.ogg")

    @pytest.mark.parametrize("index", [0, -1, 3, 100])
    async def test_out_of_bounds(self, catalog, index):
        assert catalog.get_taunt(index) is None

    async def test_list_taunts(self, catalog):
        assert [taunt.text for taunt in catalog.list_taunts()] == TEST_TAUNTS

    async def test_missing_clip_is_warned(self, catalog, mock_logging_service):
        warnings = [call.args[0] for call in mock_logging_service.warning.await_args_list]
        assert any("[2]" in message for message in warnings)

    async def test_missing_catalog_file(self, context, mock_services, tmp_path):
        service = TauntCatalogService(
            context, catalog_path=str(tmp_path / "missing.json"), audio_path=str(tmp_path)
        )
        with pytest.raises(TauntCatalogError):
            await service.on_start(mock_services)

    @pytest.mark.parametrize("content", ["{not json", json.dumps({"1": "a"}), json.dumps([1, 2])])
    async def test_malformed_catalog(self, context, mock_services, tmp_path, content):
        catalog_path = tmp_path / "taunts.json"
        catalog_path.write_text(content, encoding="utf-8")
        service = TauntCatalogService(
            context, catalog_path=str(catalog_path), audio_path=str(tmp_path)
        )
        with pytest.raises(TauntCatalogError):
            await service.on_start(mock_services)
