import pytest

from source.services.logger import AsyncLoggingService


@pytest.mark.unit
class TestAsyncLoggingService:
    """Test the queue-backed async logger."""

    @pytest.fixture
    async def logging_service(self, context, mock_services, tmp_path):
        service = AsyncLoggingService(
            context,
            log_dir=str(tmp_path / "logs"),
            log_file="test.log",
            console_output=False,
            min_level="INFO",
        )
        await service.on_start(mock_services)
        yield service
        await service.on_close()

    def _read(self, service) -> str:
        with open(service.log_path, encoding="utf-8") as f:
            return f.read()

    async def test_messages_are_flushed_on_close(self, logging_service):
        await logging_service.info("taunt sent")
        await logging_service.warning("clip missing")
        await logging_service.on_close()

        content = self._read(logging_service)
        assert "[INFO] taunt sent" in content
        assert "[WARNING] clip missing" in content

    async def test_min_level_filters(self, logging_service):
        await logging_service.debug("hidden")
        await logging_service.error("shown")
        await logging_service.on_close()

        content = self._read(logging_service)
        assert "hidden" not in content
        assert "[ERROR] shown" in content

    async def test_exc_info_appends_traceback(self, logging_service):
        try:
            raise ValueError("bad clip")
        except ValueError:
            await logging_service.error("playback failed", exc_info=True)
        await logging_service.on_close()

        content = self._read(logging_service)
        assert "playback failed" in content
        assert "ValueError: bad clip" in content

    async def test_timestamped_filename(self, context, tmp_path):
        service = AsyncLoggingService(context, log_dir=str(tmp_path))
        assert service.log_file.startswith("app_")
        assert service.log_file.endswith(".log")

        service = AsyncLoggingService(context, log_dir=str(tmp_path), use_timestamp=False)
        assert service.log_file == "app.log"
