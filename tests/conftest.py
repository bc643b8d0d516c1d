"""Pytest configuration and shared fixtures."""

from typing import Optional

import pytest
from telegram import Message, Update

from tgnostr.config import BridgeSettings
from tgnostr.keys import derive_public_key
from tgnostr.media import MediaRehoster

SECRET_KEY_HEX = "b" * 64

CHANNEL = {"id": -1001000000001, "type": "channel", "title": "Mine"}


class FakeRehoster(MediaRehoster):
    """Rehoster that maps file ids to predictable URLs without I/O."""

    def __init__(self, failing: tuple = ()):
        super().__init__(source=None, store=None)
        self.failing = set(failing)
        self.calls: list[tuple[str, Optional[str]]] = []

    async def try_rehost(self, file_id, fmt=None, label="file"):
        self.calls.append((file_id, fmt))
        if file_id in self.failing:
            return None
        suffix = f"?format={fmt}" if fmt else ""
        return f"https://media.example/{file_id}{suffix}"


def channel_update(update_id: int = 1, **fields) -> dict:
    """Bot API update carrying a channel post; ``fields`` override the post."""
    post = {"message_id": 1, "date": 1700000000, "chat": dict(CHANNEL)}
    post.update(fields)
    return {"update_id": update_id, "channel_post": post}


@pytest.fixture
def rehoster():
    return FakeRehoster()


@pytest.fixture
def make_rehoster():
    """Factory for rehosters that fail on the given file ids."""
    return FakeRehoster


@pytest.fixture
def make_update():
    """Factory for channel post updates."""
    return channel_update


@pytest.fixture
def make_message():
    """Factory for parsed channel posts."""
    def _make(**fields) -> Message:
        return Update.de_json(channel_update(**fields), None).channel_post
    return _make


@pytest.fixture
def public_key_hex():
    return derive_public_key(SECRET_KEY_HEX)


@pytest.fixture
def settings(public_key_hex):
    """Settings with a valid key pair and nothing read from the environment."""
    return BridgeSettings(
        _env_file=None,
        telegram_bot_token="token123",
        public_key=public_key_hex,
        private_key=SECRET_KEY_HEX,
        relay_url="wss://relay.example",
        relay_timeout=1.0,
        media_group_delay=0.05,
    )
