"""NIP-01 event construction and signing.

The id is the SHA-256 of the compact JSON array
``[0, pubkey, created_at, kind, tags, content]``. Relays recompute it
byte for byte, so the serialization here must match theirs exactly:
no whitespace, non-ASCII left unescaped.
"""

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional

from coincurve import PrivateKey, PublicKeyXOnly

from .errors import ValidationError

logger = logging.getLogger("tgnostr.event")

KIND_TEXT_NOTE = 1

# Lazy run after '#' up to the next space; a trailing hashtag without a
# following space is not tagged.
_HASHTAG_RE = re.compile(r"#(.*?) ")


def replace_lone_surrogates(text: str) -> str:
    """Swap unpaired UTF-16 surrogates for U+FFFD.

    JSON input may carry half of a surrogate pair (text cut mid-emoji), which
    cannot be encoded as UTF-8 and so cannot be hashed.
    """
    return text.encode("utf-16", "surrogatepass").decode("utf-16", "replace")


def extract_hashtags(content: str) -> list[list[str]]:
    """Return ``["t", tag]`` pairs for each hashtag, in order, duplicates kept."""
    return [["t", m.group(1)] for m in _HASHTAG_RE.finditer(content)]


def serialize_event(
    public_key: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Canonical serialization used for the event id."""
    return json.dumps(
        [0, public_key, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_event_id(
    public_key: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    serialized = serialize_event(public_key, created_at, kind, tags, content)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SignedEvent:
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list = field(default_factory=list)
    content: str = ""
    sig: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary in NIP-01 field order."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


def sign_event(
    content: str,
    public_key: str,
    secret_key: str,
    created_at: Optional[int] = None,
) -> SignedEvent:
    """Build and sign a kind-1 text note.

    Args:
        content: Note text
        public_key: Normalized 64-hex public key
        secret_key: Normalized 64-hex secret key
        created_at: Unix seconds (default: now)

    Returns:
        The signed event, ready for transmission

    Raises:
        ValidationError: If the secret key is not a valid secp256k1 scalar.
    """
    if created_at is None:
        created_at = int(time.time())
    content = replace_lone_surrogates(content)
    tags = extract_hashtags(content)
    event_id = compute_event_id(public_key, created_at, KIND_TEXT_NOTE, tags, content)

    try:
        signer = PrivateKey(bytes.fromhex(secret_key))
    except ValueError as e:
        raise ValidationError(f"Invalid secret key: {e}") from e
    sig = signer.sign_schnorr(bytes.fromhex(event_id))

    logger.debug(f"Signed event {event_id} ({len(tags)} tags, {len(content)} chars)")
    return SignedEvent(
        id=event_id,
        pubkey=public_key,
        created_at=created_at,
        kind=KIND_TEXT_NOTE,
        tags=tags,
        content=content,
        sig=sig.hex(),
    )


def verify_event(event: SignedEvent) -> bool:
    """Check that the id matches the content and the signature matches the id."""
    expected = compute_event_id(event.pubkey, event.created_at, event.kind, event.tags, event.content)
    if expected != event.id:
        return False
    try:
        pubkey = PublicKeyXOnly(bytes.fromhex(event.pubkey))
        return pubkey.verify(bytes.fromhex(event.sig), bytes.fromhex(event.id))
    except ValueError:
        return False
