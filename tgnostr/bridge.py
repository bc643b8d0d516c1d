"""Telegram → Nostr bridge.

Glue between the parts:

    update → ContentComposer → MediaGroupAggregator (albums) → sign → relay

``handle_update`` returns as soon as the post is composed; signing and
delivery run in the background. Every background job is registered so
``drain()`` / ``aclose()`` can wait for it on shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from telegram import Message, Update

from .aggregator import MediaGroupAggregator
from .composer import ContentComposer
from .config import BridgeSettings
from .event import SignedEvent, sign_event
from .keys import load_keypair
from .media import MediaRehoster
from .relay import RelayPublisher, parse_relay_reply

logger = logging.getLogger("tgnostr.bridge")


@dataclass
class Dispatch:
    """Outcome of one inbound update.

    ``pending`` completes when the post has been delivered (or delivery
    failed, which is logged); None when nothing was scheduled.
    """

    status: str
    pending: Optional[asyncio.Future] = None


class Bridge:
    """Relay channel posts from one bot to one relay."""

    def __init__(
        self,
        settings: BridgeSettings,
        composer: Optional[ContentComposer] = None,
        aggregator: Optional[MediaGroupAggregator] = None,
        publisher: Optional[RelayPublisher] = None,
    ):
        self.settings = settings
        self.composer = composer or ContentComposer(MediaRehoster.from_settings(settings))
        self.aggregator = aggregator or MediaGroupAggregator(settings.media_group_delay)
        self.publisher = publisher or RelayPublisher(settings.relay_url, settings.relay_timeout)
        self._background: set[asyncio.Future] = set()

    # ── Publishing ────────────────────────────────────────────

    async def publish_content(self, content: str) -> str:
        """Sign ``content`` as a text note and send it to the relay.

        Keys are re-read and re-normalized on every call.

        Returns:
            The relay's first reply, or ``RELAY_CLOSED``

        Raises:
            ConfigurationError: Keys not configured.
            ValidationError: Keys malformed.
            TransportError / RelayTimeoutError: Relay delivery failed.
        """
        keys = load_keypair(self.settings.public_key, self.settings.private_key)
        event = sign_event(content, keys.public_key, keys.secret_key)
        logger.info(f"Publishing event {event.id}: {event.to_json()}")
        reply = await self.publisher.publish(event)
        self._log_reply(event, reply)
        return reply

    def _log_reply(self, event: SignedEvent, reply: str):
        accepted, message = parse_relay_reply(reply)
        if accepted is False:
            logger.warning(f"Relay rejected event {event.id}: {message}")
        else:
            logger.info(f"Relay response for {event.id}: {reply}")

    async def _publish_logged(self, content: str):
        try:
            await self.publish_content(content)
        except Exception as e:
            logger.warning(f"Nostr send failed: {e}")

    def _track(self, fut: asyncio.Future) -> asyncio.Future:
        self._background.add(fut)
        fut.add_done_callback(self._background.discard)
        return fut

    # ── Inbound ───────────────────────────────────────────────

    async def handle_post(self, message: Message) -> Dispatch:
        composed = await self.composer.compose(message)

        if message.media_group_id:
            fut = self.aggregator.enqueue(message.media_group_id, composed, self._publish_logged)
            if fut not in self._background:
                self._track(fut)
            return Dispatch("OK", fut)

        content = composed.render()
        if not content:
            return Dispatch("No text, caption, media, or poll found")
        task = asyncio.get_running_loop().create_task(self._publish_logged(content))
        return Dispatch("OK", self._track(task))

    async def handle_update(self, update: dict) -> Dispatch:
        """Process one Bot API update.

        Anything other than a channel post is ignored.
        """
        logger.info(f"Received update: {update}")
        channel_post = update.get("channel_post") if isinstance(update, dict) else None
        if not isinstance(channel_post, dict):
            return Dispatch("No channel_post found")
        try:
            parsed = Update.de_json(update, None)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Malformed update skipped: {e}")
            return Dispatch("Malformed channel_post")
        return await self.handle_post(parsed.channel_post)

    # ── Shutdown ──────────────────────────────────────────────

    @property
    def outstanding(self) -> int:
        return len(self._background)

    async def drain(self):
        """Wait for every scheduled delivery, including open media groups."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self):
        """Flush open media groups immediately, drain, then release clients."""
        try:
            await self.aggregator.shutdown()
            await self.drain()
        finally:
            await self.composer.aclose()
