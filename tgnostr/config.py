"""tgnostr configuration management."""

import logging
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("tgnostr.config")


class BridgeSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Telegram
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")

    # Nostr identity (hex or npub/nsec)
    public_key: Optional[str] = Field(default=None, description="Nostr public key (hex or npub)")
    private_key: Optional[str] = Field(default=None, description="Nostr secret key (hex or nsec)")

    # Relay
    relay_url: str = Field(default="wss://nos.lol", description="Relay WebSocket URL")
    relay_timeout: float = Field(default=5.0, description="Seconds to wait for a relay reply")

    # Media groups
    media_group_delay: float = Field(
        default=2.0,
        description="Seconds between the first fragment of a media group and its flush",
    )

    # Blob store for rehosted attachments
    blob_store: Optional[Literal["http", "local"]] = Field(default=None, description="Blob store backend")
    blob_endpoint: Optional[str] = Field(default=None, description="Upload base URL (http store)")
    blob_token: Optional[str] = Field(default=None, description="Bearer token for uploads (http store)")
    blob_public_url: Optional[str] = Field(default=None, description="Public base URL of stored objects")
    blob_dir: Optional[str] = Field(default=None, description="Target directory (local store)")
    cache_control: str = Field(default="public, max-age=86400", description="Cache-Control for stored objects")

    model_config = {"env_prefix": "TGNOSTR_", "env_file": ".env", "extra": "ignore"}


def load_settings() -> BridgeSettings:
    """Load settings from environment."""
    settings = BridgeSettings()

    if not settings.relay_url.startswith("wss://"):
        logger.warning(
            f"Relay URL {settings.relay_url} is not wss://, events will travel unencrypted."
        )
    if not settings.private_key:
        logger.warning("TGNOSTR_PRIVATE_KEY is not set, nothing can be published.")

    return settings
