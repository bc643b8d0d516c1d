"""tgnostr — runtime entry points."""

import logging
import os
from typing import Optional

from .bridge import Bridge, Dispatch
from .config import BridgeSettings, load_settings

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("tgnostr")


def setup_logging(debug: bool = False, log_file: Optional[str] = None):
    """Log to stderr, and to ``log_file`` (or $TGNOSTR_LOG_FILE) if given."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = log_file or os.environ.get("TGNOSTR_LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"))
    logging.basicConfig(level=logging.INFO, format=_log_format, handlers=handlers)
    if debug:
        logging.getLogger("tgnostr").setLevel(logging.DEBUG)


async def run_updates(updates: list[dict], settings: Optional[BridgeSettings] = None) -> list[Dispatch]:
    """Feed Bot API updates through one bridge and wait for every delivery.

    Updates share the bridge, so album fragments in one batch merge into
    a single note. Groups still open after the last update are flushed
    right away instead of waiting for their deadline.
    """
    bridge = Bridge(settings or load_settings())
    results = []
    try:
        for update in updates:
            dispatch = await bridge.handle_update(update)
            logger.info(f"Update dispatched: {dispatch.status}")
            results.append(dispatch)
    finally:
        await bridge.aclose()
    return results


async def run_post(text: str, settings: Optional[BridgeSettings] = None) -> str:
    """Sign and publish a plain text note; returns the relay reply."""
    bridge = Bridge(settings or load_settings())
    try:
        return await bridge.publish_content(text)
    finally:
        await bridge.aclose()
