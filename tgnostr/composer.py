"""Turn one channel post into note content.

Extracts text, forward attribution, poll and media from a
python-telegram-bot ``Message``. Media and labels are best-effort
enrichment: a failed attachment is dropped, never the whole post.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from telegram import (
    Chat,
    Message,
    MessageOriginChannel,
    MessageOriginChat,
    MessageOriginHiddenUser,
    MessageOriginUser,
    User,
)

from .media import MediaRehoster

logger = logging.getLogger("tgnostr.composer")

# Supergroup/channel ids are reported as -100<internal id>
_CHANNEL_ID_PREFIX = "-100"
_TME = "https://t.me"
_SEPARATOR = "\n\n"


@dataclass
class ComposedPost:
    """Content pieces of one post, before joining."""

    text: str = ""
    emoji: str = ""
    forwarded_label: str = ""
    media_urls: list[str] = field(default_factory=list)
    poll_content: str = ""

    def render(self) -> str:
        return compose_content(
            self.forwarded_label,
            self.text,
            self.emoji,
            self.media_urls,
            self.poll_content,
        )


def compose_content(
    forwarded_label: str,
    text: str,
    emoji: str,
    media_urls: list[str],
    poll_content: str,
) -> str:
    """Join ``[label, text-or-emoji, *urls, poll]`` with blank lines, skipping empties."""
    parts = [forwarded_label, text or emoji, *media_urls, poll_content]
    return _SEPARATOR.join(p for p in parts if p)


# ============================================================
# TEXT
# ============================================================

def extract_text(message: Message) -> str:
    """``text``, else ``caption``, else empty."""
    if message.text is not None:
        return message.text
    if message.caption is not None:
        return message.caption
    return ""


# ============================================================
# LINKS & FORWARD ATTRIBUTION
# ============================================================

def chat_label(chat: Optional[Chat]) -> str:
    """Chat title, else ``@username``."""
    if chat is None:
        return ""
    if chat.title:
        return chat.title
    return f"@{chat.username}" if chat.username else ""


def user_label(user: Optional[User]) -> str:
    """Full name, else ``@username``."""
    if user is None:
        return ""
    if user.full_name:
        return user.full_name
    return f"@{user.username}" if user.username else ""


def build_message_link(chat: Optional[Chat], message_id: Optional[int]) -> Optional[str]:
    """Deep link to a message, or None if the chat cannot be addressed.

    Public chats link by username; private channels by their internal id
    (the chat id without the ``-100`` prefix, or without the sign).
    """
    if chat is None or not message_id:
        return None
    if chat.username:
        return f"{_TME}/{chat.username}/{message_id}"
    if chat.id is None:
        return None
    id_str = str(chat.id)
    if id_str.startswith(_CHANNEL_ID_PREFIX):
        stripped = id_str[len(_CHANNEL_ID_PREFIX):]
    else:
        stripped = id_str.replace("-", "", 1)
    if not stripped:
        return None
    return f"{_TME}/c/{stripped}/{message_id}"


def _legacy_object(message: Message, key: str, cls):
    """Parse a pre-7.0 forward field; the library keeps those raw in ``api_kwargs``."""
    data = message.api_kwargs.get(key)
    if not isinstance(data, dict):
        return None
    try:
        return cls.de_json(data, None)
    except (TypeError, ValueError) as e:
        logger.debug(f"Ignoring malformed {key}: {e}")
        return None


def _origin_attribution(message: Message) -> tuple[str, Optional[Chat], Optional[int]]:
    origin = message.forward_origin
    if isinstance(origin, MessageOriginChannel):
        return chat_label(origin.chat), origin.chat, origin.message_id
    if isinstance(origin, MessageOriginChat):
        return chat_label(origin.sender_chat), None, None
    if isinstance(origin, MessageOriginUser):
        return user_label(origin.sender_user), None, None
    if isinstance(origin, MessageOriginHiddenUser):
        return origin.sender_user_name or "", None, None
    return "", None, None


def _legacy_chat_attribution(message: Message) -> tuple[str, Optional[Chat], Optional[int]]:
    chat = _legacy_object(message, "forward_from_chat", Chat)
    if chat is None:
        return "", None, None
    return chat_label(chat), chat, message.api_kwargs.get("forward_from_message_id")


def _legacy_user_attribution(message: Message) -> tuple[str, Optional[Chat], Optional[int]]:
    return user_label(_legacy_object(message, "forward_from", User)), None, None


def _legacy_name_attribution(message: Message) -> tuple[str, Optional[Chat], Optional[int]]:
    name = message.api_kwargs.get("forward_sender_name")
    return (name if isinstance(name, str) else ""), None, None


# Tried in order; the first non-empty label wins.
_ATTRIBUTION_CHAIN = (
    _origin_attribution,
    _legacy_chat_attribution,
    _legacy_user_attribution,
    _legacy_name_attribution,
)


def build_forwarded_label(message: Message) -> str:
    """``Forwarded from <label>`` plus a link line when the source is addressable."""
    for step in _ATTRIBUTION_CHAIN:
        label, chat, message_id = step(message)
        if label:
            lines = [f"Forwarded from {label}"]
            link = build_message_link(chat, message_id)
            if link:
                lines.append(link)
            return "\n".join(lines)
    return ""


# ============================================================
# POLLS
# ============================================================

def build_poll_content(message: Message) -> str:
    poll = message.poll
    if poll is None:
        return ""
    parts = []
    if poll.question:
        parts.append(f"Poll: {poll.question}")
    options = [o.text for o in poll.options if o.text]
    if options:
        parts.append("\n".join(f"{i}. {text}" for i, text in enumerate(options, 1)))
    if not parts:
        return ""
    link = build_message_link(message.chat or message.sender_chat, message.message_id)
    if link:
        parts.append(link)
    return _SEPARATOR.join(parts)


# ============================================================
# MEDIA
# ============================================================

class MediaKind(str, Enum):
    PHOTO = "photo"
    STICKER = "sticker"
    VIDEO = "video"
    ANIMATION = "animation"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"
    VIDEO_NOTE = "video_note"


@dataclass(frozen=True)
class MediaRef:
    kind: MediaKind
    file_id: str
    fmt: Optional[str] = None


_PLAIN_MEDIA = (
    MediaKind.VIDEO,
    MediaKind.ANIMATION,
    MediaKind.DOCUMENT,
    MediaKind.AUDIO,
    MediaKind.VOICE,
    MediaKind.VIDEO_NOTE,
)


def _sticker_thumbnail_id(message: Message) -> Optional[str]:
    sticker = message.sticker
    if sticker.thumbnail:
        return sticker.thumbnail.file_id
    # Older Bot API versions call it 'thumb'
    thumb = sticker.api_kwargs.get("thumb")
    if isinstance(thumb, dict) and thumb.get("file_id"):
        return str(thumb["file_id"])
    return None


def select_media(message: Message) -> list[MediaRef]:
    """List the files to rehost, in display order.

    Photos use the largest size (last entry). Animated and video stickers
    are shown through their thumbnail converted to PNG when one exists.
    """
    refs = []
    if message.photo:
        refs.append(MediaRef(MediaKind.PHOTO, message.photo[-1].file_id))
    sticker = message.sticker
    if sticker:
        thumb_id = _sticker_thumbnail_id(message)
        if (sticker.is_animated or sticker.is_video) and thumb_id:
            refs.append(MediaRef(MediaKind.STICKER, thumb_id, "png"))
        else:
            refs.append(MediaRef(MediaKind.STICKER, sticker.file_id))
    for kind in _PLAIN_MEDIA:
        attachment = getattr(message, kind.value)
        if attachment:
            refs.append(MediaRef(kind, attachment.file_id))
    return refs


class ContentComposer:
    """Build a ``ComposedPost`` from a channel ``Message``."""

    def __init__(self, rehoster: MediaRehoster):
        self.rehoster = rehoster

    async def rehost_media(self, message: Message) -> list[tuple[MediaRef, str]]:
        """Rehost every attachment; failed ones are left out."""
        resolved = []
        for ref in select_media(message):
            url = await self.rehoster.try_rehost(ref.file_id, ref.fmt, label=ref.kind.value)
            if url:
                resolved.append((ref, url))
        return resolved

    async def compose(self, message: Message) -> ComposedPost:
        resolved = await self.rehost_media(message)
        # The emoji stands in for text only next to a sticker that made it
        sticker_shown = any(ref.kind is MediaKind.STICKER for ref, _ in resolved)
        composed = ComposedPost(
            text=extract_text(message),
            emoji=(message.sticker.emoji or "") if sticker_shown else "",
            forwarded_label=build_forwarded_label(message),
            media_urls=[url for _, url in resolved],
            poll_content=build_poll_content(message),
        )
        logger.debug(
            f"Composed post {message.message_id}: {len(composed.text)} chars, "
            f"{len(composed.media_urls)} media"
        )
        return composed

    async def aclose(self):
        await self.rehoster.aclose()
