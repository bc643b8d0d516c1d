"""Bridge exception hierarchy.

Library errors (httpx, python-telegram-bot, aiohttp, Pillow) are wrapped
into these at the collaborator seam, so callers only ever catch
``BridgeError`` subclasses.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""
    pass


class ConfigurationError(BridgeError):
    """Required setting missing (keys, bot token, blob store)."""
    pass


class ValidationError(BridgeError):
    """Malformed key material."""
    pass


class MediaResolutionError(BridgeError):
    """Telegram file lookup or download failed."""
    pass


class TransportError(BridgeError):
    """Upload or relay connection failed."""
    pass


class RelayTimeoutError(BridgeError, TimeoutError):
    """Relay gave no answer within the publish window."""
    pass
