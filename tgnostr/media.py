"""Attachment rehosting.

Telegram file URLs embed the bot token, so attachments are downloaded and
stored under a public URL before they appear in a note:

    file_id → MediaSource.fetch → BlobStore.put → BlobStore.public_url
"""

import io
import logging
import mimetypes
import posixpath
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import httpx
from PIL import Image, UnidentifiedImageError
from telegram import Bot
from telegram.error import TelegramError

from .errors import BridgeError, ConfigurationError, MediaResolutionError, TransportError

logger = logging.getLogger("tgnostr.media")

DEFAULT_CACHE_CONTROL = "public, max-age=86400"


# ============================================================
# MEDIA SOURCE
# ============================================================

class MediaSource(ABC):
    """Where attachments come from."""

    @abstractmethod
    async def fetch(self, file_id: str, fmt: Optional[str] = None) -> tuple[str, bytes]:
        """Download a file, optionally converted to image format ``fmt``.

        Returns:
            Tuple of (file path on the source, file bytes)
        """
        ...

    async def aclose(self):
        """Release connections held by the source."""
        pass


def transcode_image(data: bytes, fmt: str) -> bytes:
    """Convert image bytes to ``fmt`` (e.g. 'png') with Pillow."""
    with Image.open(io.BytesIO(data)) as im:
        out = io.BytesIO()
        im.save(out, format=fmt.upper())
        return out.getvalue()


class TelegramMediaSource(MediaSource):
    """Bot API file source.

    ``getFile`` and the download both go through python-telegram-bot, so the
    token-bearing file URL never leaves the library.
    """

    def __init__(self, bot_token: Optional[str], timeout: float = 30.0, bot: Optional[Bot] = None):
        self.bot_token = bot_token
        self.timeout = timeout
        self._bot = bot
        self._started = False

    async def _get_bot(self) -> Bot:
        if self._bot is None:
            if not self.bot_token:
                raise ConfigurationError("Missing telegram bot token (TGNOSTR_TELEGRAM_BOT_TOKEN)")
            self._bot = Bot(self.bot_token)
        if not self._started:
            try:
                await self._bot.initialize()
            except TelegramError as e:
                raise MediaResolutionError(f"Telegram bot initialization failed: {e}") from e
            self._started = True
        return self._bot

    async def fetch(self, file_id: str, fmt: Optional[str] = None) -> tuple[str, bytes]:
        bot = await self._get_bot()
        try:
            tg_file = await bot.get_file(file_id, read_timeout=self.timeout)
            if not tg_file.file_path:
                raise MediaResolutionError(f"Telegram getFile response for {file_id} missing file_path")
            data = bytes(await tg_file.download_as_bytearray(read_timeout=self.timeout))
        except TelegramError as e:
            raise MediaResolutionError(f"Telegram download failed for {file_id}: {e}") from e

        if fmt:
            try:
                data = transcode_image(data, fmt)
            except (UnidentifiedImageError, OSError, ValueError) as e:
                logger.warning(f"Image conversion to {fmt} failed, falling back to original: {e}")
        return tg_file.file_path, data

    async def aclose(self):
        if self._started:
            self._started = False
            await self._bot.shutdown()
            logger.debug("Telegram bot client shut down")


# ============================================================
# BLOB STORE
# ============================================================

class BlobStore(ABC):
    """Where rehosted attachments live."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str = DEFAULT_CACHE_CONTROL,
    ) -> None:
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        ...


class HttpBlobStore(BlobStore):
    """Store objects with ``PUT {endpoint}/{key}`` (S3-style gateways, R2 workers, etc.)."""

    def __init__(
        self,
        endpoint: str,
        public_base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.public_base_url = (public_base_url or endpoint).rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def put(self, key, data, content_type="application/octet-stream", cache_control=DEFAULT_CACHE_CONTROL):
        headers = {"Content-Type": content_type, "Cache-Control": cache_control}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.put(f"{self.endpoint}/{key}", content=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Blob upload of {key} failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Blob upload of {key} failed: {e}") from e
        logger.debug(f"Stored {key} ({len(data)} bytes, {content_type})")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


class LocalBlobStore(BlobStore):
    """Write objects into a directory served by an external web server."""

    def __init__(self, directory: str, public_base_url: str):
        self.directory = Path(directory).expanduser()
        self.public_base_url = public_base_url.rstrip("/")

    async def put(self, key, data, content_type="application/octet-stream", cache_control=DEFAULT_CACHE_CONTROL):
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            (self.directory / key).write_bytes(data)
        except OSError as e:
            raise TransportError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {key} in {self.directory}")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


def build_blob_store(settings) -> Optional[BlobStore]:
    """Create the blob store configured in settings, or None if unset."""
    if settings.blob_store == "http":
        if not settings.blob_endpoint:
            raise ConfigurationError("TGNOSTR_BLOB_ENDPOINT is required for the http blob store")
        return HttpBlobStore(settings.blob_endpoint, settings.blob_public_url, settings.blob_token)
    if settings.blob_store == "local":
        if not settings.blob_dir or not settings.blob_public_url:
            raise ConfigurationError(
                "TGNOSTR_BLOB_DIR and TGNOSTR_BLOB_PUBLIC_URL are required for the local blob store"
            )
        return LocalBlobStore(settings.blob_dir, settings.blob_public_url)
    return None


# ============================================================
# OBJECT KEYS
# ============================================================

class ObjectKeyGenerator:
    """Time-sortable object keys: ``YYYYMMDD-HHMMSS-<n>.<ext>``.

    ``n`` counts up within one UTC second and restarts at 0 on the next,
    so keys never collide within a process.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._second = ""
        self._counter = 0

    def next_key(self, extension: str = "bin") -> str:
        stamp = self._clock().strftime("%Y%m%d-%H%M%S")
        if stamp != self._second:
            self._second = stamp
            self._counter = 0
        else:
            self._counter += 1
        ext = extension.lstrip(".").lower() or "bin"
        return f"{stamp}-{self._counter}.{ext}"


def infer_extension(path: str, fmt: Optional[str] = None) -> str:
    if fmt:
        return fmt.lower()
    ext = posixpath.splitext(path.split("?", 1)[0])[1].lstrip(".")
    return ext.lower() or "bin"


# ============================================================
# REHOSTING
# ============================================================

class MediaRehoster:
    """Copy one Telegram file into the blob store and return its public URL.

    A missing or broken storage setup is kept as ``store_error`` and raised
    per attachment, so text-only posts still go out.
    """

    def __init__(
        self,
        source: Optional[MediaSource],
        store: Optional[BlobStore],
        cache_control: str = DEFAULT_CACHE_CONTROL,
        keys: Optional[ObjectKeyGenerator] = None,
        store_error: Optional[ConfigurationError] = None,
    ):
        self.source = source
        self.store = store
        self.cache_control = cache_control
        self.keys = keys or ObjectKeyGenerator()
        self.store_error = store_error

    @classmethod
    def from_settings(cls, settings) -> "MediaRehoster":
        """Telegram source plus the configured blob store."""
        store, store_error = None, None
        try:
            store = build_blob_store(settings)
        except ConfigurationError as e:
            logger.error(f"Blob store unavailable, attachments will be skipped: {e}")
            store_error = e
        return cls(
            TelegramMediaSource(settings.telegram_bot_token),
            store,
            cache_control=settings.cache_control,
            store_error=store_error,
        )

    async def rehost(self, file_id: str, fmt: Optional[str] = None) -> str:
        """Rehost a file.

        Raises:
            ConfigurationError: If no source or store is configured.
            MediaResolutionError: If Telegram lookup or download fails.
            TransportError: If the upload fails.
        """
        if self.source is None:
            raise ConfigurationError("No media source configured")
        if self.store is None:
            if self.store_error is not None:
                raise ConfigurationError(str(self.store_error))
            raise ConfigurationError("No blob store configured (TGNOSTR_BLOB_STORE)")

        path, data = await self.source.fetch(file_id, fmt)
        ext = infer_extension(path, fmt)
        key = self.keys.next_key(ext)
        content_type = mimetypes.guess_type(f"x.{ext}")[0] or "application/octet-stream"
        await self.store.put(key, data, content_type=content_type, cache_control=self.cache_control)
        url = self.store.public_url(key)
        logger.info(f"Rehosted {file_id} as {url}")
        return url

    async def try_rehost(self, file_id: str, fmt: Optional[str] = None, label: str = "file") -> Optional[str]:
        """Like ``rehost`` but logs failures and returns None."""
        try:
            return await self.rehost(file_id, fmt)
        except BridgeError as e:
            logger.warning(f"Failed to resolve Telegram {label}: {e}")
            return None

    async def aclose(self):
        if self.source is not None:
            await self.source.aclose()
