"""End-to-end tests for the Telegram → Nostr bridge."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tgnostr.aggregator import MediaGroupAggregator
from tgnostr.bridge import Bridge
from tgnostr.composer import ContentComposer
from tgnostr.errors import ConfigurationError, TransportError, ValidationError
from tgnostr.event import verify_event
from tgnostr.keys import derive_public_key, encode_key
from tgnostr.media import MediaRehoster, MediaSource


def _photo(*file_ids):
    return [
        {"file_id": fid, "file_unique_id": f"u-{fid}", "width": 90, "height": 90}
        for fid in file_ids
    ]


class FakePublisher:
    """Collects events instead of talking to a relay."""

    def __init__(self, reply: str = '["OK","x",true,""]', error: Exception = None):
        self.events = []
        self.reply = reply
        self.error = error

    async def publish(self, event):
        self.events.append(event)
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def bridge(settings, rehoster, publisher):
    return Bridge(
        settings,
        composer=ContentComposer(rehoster),
        aggregator=MediaGroupAggregator(settings.media_group_delay),
        publisher=publisher,
    )


class TestSinglePost:
    async def test_caption_and_last_photo(self, bridge, publisher, public_key_hex, make_update):
        dispatch = await bridge.handle_update(make_update(caption="hi", photo=_photo("a", "b")))
        await dispatch.pending

        assert dispatch.status == "OK"
        assert len(publisher.events) == 1
        event = publisher.events[0]
        assert event.content == "hi\n\nhttps://media.example/b"
        assert event.pubkey == public_key_hex
        assert verify_event(event)

    async def test_hashtags_become_tags(self, bridge, publisher, make_update):
        dispatch = await bridge.handle_update(make_update(text="news #bitcoin today"))
        await dispatch.pending

        assert publisher.events[0].tags == [["t", "bitcoin"]]

    async def test_truncated_emoji_still_published(self, bridge, publisher, make_update):
        dispatch = await bridge.handle_update(make_update(text="broken \ud83d emoji"))
        await dispatch.pending

        assert [e.content for e in publisher.events] == ["broken \ufffd emoji"]
        assert verify_event(publisher.events[0])

    async def test_no_channel_post(self, bridge, publisher):
        dispatch = await bridge.handle_update({"update_id": 1, "message": {"text": "dm"}})

        assert dispatch.status == "No channel_post found"
        assert dispatch.pending is None
        assert publisher.events == []

    async def test_malformed_channel_post(self, bridge, publisher):
        dispatch = await bridge.handle_update({"update_id": 1, "channel_post": {"text": "no id"}})

        assert dispatch.status == "Malformed channel_post"
        assert dispatch.pending is None
        assert publisher.events == []

    async def test_empty_post_not_published(self, bridge, publisher, make_update):
        dispatch = await bridge.handle_update(make_update())

        assert dispatch.pending is None
        assert publisher.events == []

    async def test_only_failed_media_not_published(self, settings, make_rehoster, publisher, make_update):
        bridge = Bridge(settings, composer=ContentComposer(make_rehoster(failing=("p",))), publisher=publisher)

        dispatch = await bridge.handle_update(make_update(photo=_photo("p")))

        assert dispatch.pending is None
        assert publisher.events == []

    async def test_relay_failure_is_logged_not_raised(self, settings, rehoster, caplog, make_update):
        publisher = FakePublisher(error=TransportError("relay down"))
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        dispatch = await bridge.handle_update(make_update(text="hi"))
        await dispatch.pending

        assert len(publisher.events) == 1
        assert "Nostr send failed" in caplog.text


class TestMediaGroups:
    async def test_two_fragments_one_event(self, bridge, publisher, make_update):
        first = await bridge.handle_update(make_update(
            media_group_id="g1", caption="first", photo=_photo("1"),
        ))
        second = await bridge.handle_update(make_update(
            update_id=2, message_id=2, media_group_id="g1", photo=_photo("2"),
        ))
        assert first.pending is second.pending
        assert publisher.events == []

        await first.pending

        assert len(publisher.events) == 1
        content = publisher.events[0].content
        assert content == "first\n\nhttps://media.example/1\n\nhttps://media.example/2"

    async def test_separate_groups_separate_events(self, bridge, publisher, make_update):
        a = await bridge.handle_update(make_update(media_group_id="a", caption="A"))
        b = await bridge.handle_update(make_update(media_group_id="b", caption="B"))
        await asyncio.gather(a.pending, b.pending)

        assert sorted(e.content for e in publisher.events) == ["A", "B"]

    async def test_drain_waits_for_groups(self, bridge, publisher, make_update):
        await bridge.handle_update(make_update(media_group_id="g", caption="x"))
        assert bridge.outstanding == 1

        await bridge.drain()

        assert len(publisher.events) == 1
        assert bridge.outstanding == 0

    async def test_aclose_flushes_without_waiting(self, settings, rehoster, publisher, make_update):
        bridge = Bridge(
            settings,
            composer=ContentComposer(rehoster),
            aggregator=MediaGroupAggregator(flush_delay=30.0),
            publisher=publisher,
        )
        await bridge.handle_update(make_update(media_group_id="g", caption="x"))

        await asyncio.wait_for(bridge.aclose(), timeout=2.0)

        assert [e.content for e in publisher.events] == ["x"]


class TestStorageConfig:
    async def test_incomplete_store_config_keeps_text_posts(self, settings, publisher, make_update):
        settings = settings.model_copy(update={"blob_store": "http", "blob_endpoint": None})
        bridge = Bridge(settings, publisher=publisher)

        dispatch = await bridge.handle_update(make_update(text="plain text"))
        await dispatch.pending

        assert [e.content for e in publisher.events] == ["plain text"]

    async def test_incomplete_store_config_drops_only_media(self, settings, publisher, make_update, caplog):
        settings = settings.model_copy(update={"blob_store": "local", "blob_dir": "/tmp/x"})
        bridge = Bridge(settings, publisher=publisher)
        source = AsyncMock(spec=MediaSource)
        bridge.composer.rehoster.source = source

        dispatch = await bridge.handle_update(make_update(caption="album", photo=_photo("p")))
        await dispatch.pending

        assert [e.content for e in publisher.events] == ["album"]
        source.fetch.assert_not_called()
        assert "TGNOSTR_BLOB_PUBLIC_URL" in caplog.text


class TestClose:
    async def test_aclose_releases_media_source(self, settings, publisher):
        source = AsyncMock(spec=MediaSource)
        rehoster = MediaRehoster(source, None)
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        await bridge.aclose()

        source.aclose.assert_awaited_once()


class TestKeys:
    async def test_bech32_keys_accepted(self, settings, rehoster, publisher, public_key_hex):
        settings = settings.model_copy(update={
            "public_key": encode_key(public_key_hex, "npub"),
            "private_key": encode_key(settings.private_key, "nsec"),
        })
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        await bridge.publish_content("hello")

        assert publisher.events[0].pubkey == public_key_hex
        assert verify_event(publisher.events[0])

    async def test_missing_keys_abort_publish(self, settings, rehoster, publisher):
        settings = settings.model_copy(update={"private_key": None})
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        with pytest.raises(ConfigurationError):
            await bridge.publish_content("hello")
        assert publisher.events == []

    async def test_malformed_keys_abort_publish(self, settings, rehoster, publisher):
        settings = settings.model_copy(update={"public_key": "npub1notakey"})
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        with pytest.raises(ValidationError):
            await bridge.publish_content("hello")
        assert publisher.events == []

    async def test_mismatched_keys_abort_publish(self, settings, rehoster, publisher):
        settings = settings.model_copy(update={"public_key": derive_public_key("c" * 64)})
        bridge = Bridge(settings, composer=ContentComposer(rehoster), publisher=publisher)

        with pytest.raises(ValidationError):
            await bridge.publish_content("hello")
        assert publisher.events == []

    async def test_publish_returns_relay_reply(self, bridge):
        assert await bridge.publish_content("hello") == '["OK","x",true,""]'
