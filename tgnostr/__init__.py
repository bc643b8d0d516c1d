"""tgnostr — relay Telegram channel posts to Nostr."""

__version__ = "0.4.0"
