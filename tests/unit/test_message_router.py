from unittest.mock import AsyncMock

import pytest

from source.message_router import MessageRouter


def accept_all():
    return AsyncMock(return_value=True)


@pytest.mark.unit
class TestMessageRouter:
    async def test_routes_run_in_order(self, make_message):
        router = MessageRouter()
        router.register_handler("first", accept_all(), AsyncMock(return_value=True))
        router.register_handler("second", accept_all(), AsyncMock(return_value=None))

        assert await router.process_message(make_message("1")) == ["first", "second"]

    async def test_filtered_route_is_skipped(self, make_message):
        router = MessageRouter()
        skipped = AsyncMock()
        router.register_handler("skipped", AsyncMock(return_value=False), skipped)
        router.register_handler("taken", accept_all(), AsyncMock())

        assert await router.process_message(make_message("1")) == ["taken"]
        skipped.assert_not_awaited()

    async def test_stop_propagation(self, make_message):
        router = MessageRouter()
        later = AsyncMock()
        router.register_handler("stops", accept_all(), AsyncMock(return_value=False))
        router.register_handler("later", accept_all(), later)

        assert await router.process_message(make_message("1")) == ["stops"]
        later.assert_not_awaited()

        router = MessageRouter()
        router.register_handler("blocking", accept_all(), AsyncMock(), pass_through=False)
        router.register_handler("later", accept_all(), later)

        assert await router.process_message(make_message("1")) == ["blocking"]
        later.assert_not_awaited()

    async def test_failing_route_does_not_stop_others(self, make_message):
        router = MessageRouter()
        router.register_handler("broken", accept_all(), AsyncMock(side_effect=RuntimeError("x")))
        router.register_handler("working", accept_all(), AsyncMock())

        assert await router.process_message(make_message("1")) == ["working"]
