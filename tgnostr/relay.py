"""Relay delivery over WebSocket.

One connection per publish, no pooling and no retries. The caller decides
whether a failed publish is retried or dropped.
"""

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from .errors import RelayTimeoutError, TransportError
from .event import SignedEvent

logger = logging.getLogger("tgnostr.relay")

DEFAULT_RELAY_URL = "wss://nos.lol"
DEFAULT_TIMEOUT = 5.0

# Returned when the relay hangs up before answering.
RELAY_CLOSED = "closed"

_CLOSE_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


def build_event_frame(event: SignedEvent) -> str:
    """Relay command frame: ``["EVENT", <event>]``."""
    return json.dumps(["EVENT", event.to_dict()], separators=(",", ":"), ensure_ascii=False)


def parse_relay_reply(raw: str) -> tuple[Optional[bool], str]:
    """Interpret a relay reply for logging.

    Returns:
        Tuple of (accepted, message)
        - accepted is True/False for an ``OK`` reply, None otherwise
        - message is the relay's explanation, or the raw text if unparseable
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError):
        return None, str(raw)
    if not isinstance(frame, list) or not frame:
        return None, str(raw)
    if frame[0] == "OK" and len(frame) >= 3:
        message = frame[3] if len(frame) > 3 else ""
        return bool(frame[2]), str(message)
    if frame[0] == "NOTICE" and len(frame) >= 2:
        return None, str(frame[1])
    return None, str(raw)


class RelayPublisher:
    """Send signed events to a single relay.

    Usage:
        publisher = RelayPublisher("wss://nos.lol", timeout=5.0)
        reply = await publisher.publish(event)

    Outcomes, whichever happens first:
    - first message from the relay → connection closed normally, message returned
    - relay closes first → ``RELAY_CLOSED``
    - connection error → ``TransportError``
    - nothing within ``timeout`` seconds → connection closed, ``RelayTimeoutError``
    """

    def __init__(self, url: str = DEFAULT_RELAY_URL, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout

    async def publish(self, event: SignedEvent) -> str:
        frame = build_event_frame(event)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        async with aiohttp.ClientSession() as session:
            try:
                ws = await asyncio.wait_for(session.ws_connect(self.url), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise RelayTimeoutError(
                    f"nostr relay timed out after {self.timeout}s (connect)"
                ) from e
            except (aiohttp.ClientError, OSError) as e:
                raise TransportError(f"Cannot connect to relay {self.url}: {e}") from e

            async with ws:
                try:
                    await ws.send_str(frame)
                except (aiohttp.ClientError, ConnectionError) as e:
                    raise TransportError(f"Failed to send event to {self.url}: {e}") from e
                logger.debug(f"Sent event {event.id} to {self.url}")

                remaining = max(0.0, deadline - loop.time())
                try:
                    msg = await asyncio.wait_for(ws.receive(), timeout=remaining)
                except asyncio.TimeoutError as e:
                    await ws.close(code=aiohttp.WSCloseCode.OK, message=b"timeout")
                    raise RelayTimeoutError(
                        f"nostr relay timed out after {self.timeout}s"
                    ) from e

                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await ws.close(code=aiohttp.WSCloseCode.OK, message=b"ok")
                    data = msg.data
                    if isinstance(data, bytes):
                        data = data.decode("utf-8", errors="replace")
                    return data
                if msg.type in _CLOSE_TYPES:
                    logger.info(f"Relay {self.url} closed before replying")
                    return RELAY_CLOSED
                raise TransportError(f"Relay connection error: {ws.exception() or msg.data}")
