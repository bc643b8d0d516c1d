"""Tests for the runtime entry points."""

from unittest.mock import AsyncMock, patch

import pytest

from tgnostr.bridge import Dispatch
from tgnostr.errors import TransportError
from tgnostr.main import run_post, run_updates


@pytest.fixture
def bridge():
    with patch("tgnostr.main.Bridge") as cls:
        instance = cls.return_value
        instance.handle_update = AsyncMock(return_value=Dispatch("OK"))
        instance.publish_content = AsyncMock(return_value='["OK","x",true,""]')
        instance.aclose = AsyncMock()
        yield instance


class TestRunUpdates:
    async def test_closes_bridge_after_batch(self, bridge, settings):
        results = await run_updates([{"update_id": 1}, {"update_id": 2}], settings)

        assert [r.status for r in results] == ["OK", "OK"]
        bridge.aclose.assert_awaited_once()

    async def test_closes_bridge_on_error(self, bridge, settings):
        bridge.handle_update.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await run_updates([{"update_id": 1}], settings)
        bridge.aclose.assert_awaited_once()


class TestRunPost:
    async def test_returns_reply_and_closes(self, bridge, settings):
        assert await run_post("hello", settings) == '["OK","x",true,""]'
        bridge.aclose.assert_awaited_once()

    async def test_closes_bridge_on_relay_error(self, bridge, settings):
        bridge.publish_content.side_effect = TransportError("relay down")

        with pytest.raises(TransportError):
            await run_post("hello", settings)
        bridge.aclose.assert_awaited_once()
