"""Nostr key normalization.

Keys may be configured either as 64-char hex or as NIP-19 bech32 strings
(``npub1...`` / ``nsec1...``). Everything downstream works with lower-case
hex, so both forms are normalized here.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from coincurve import PrivateKey

from .errors import ConfigurationError, ValidationError

logger = logging.getLogger("tgnostr.keys")

PUBLIC_PREFIX = "npub"
SECRET_PREFIX = "nsec"

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_MAP = {c: i for i, c in enumerate(BECH32_CHARSET)}
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LEN = 6


# ============================================================
# BECH32 PRIMITIVES
# ============================================================

def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i, gen in enumerate(_GENERATORS):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    mod = _polymod(_hrp_expand(hrp) + data + [0] * _CHECKSUM_LEN) ^ 1
    return [(mod >> (5 * (5 - i))) & 31 for i in range(_CHECKSUM_LEN)]


def convert_bits(data: list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    """Regroup a sequence of ``from_bits``-wide values into ``to_bits``-wide values.

    Without padding, leftover bits must be fewer than ``from_bits`` and all
    zero, otherwise the input was not produced by a padded encoder.

    Raises:
        ValidationError: On out-of-range input or bad padding.
    """
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1

    for value in data:
        if value < 0 or value >> from_bits:
            raise ValidationError("Invalid bech32 value")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or (acc << (to_bits - bits)) & maxv:
        raise ValidationError("Invalid bech32 padding")

    return ret


def decode_bech32(value: str) -> tuple[str, list[int]]:
    """Decode a bech32 string into ``(hrp, data)`` with the checksum removed."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Nostr key must be a non-empty string")
    trimmed = value.strip()
    if trimmed != trimmed.lower() and trimmed != trimmed.upper():
        raise ValidationError("Bech32 keys cannot use mixed case")

    normalized = trimmed.lower()
    sep = normalized.rfind("1")
    if sep < 1 or sep + _CHECKSUM_LEN + 1 > len(normalized):
        raise ValidationError("Invalid bech32 key format")

    hrp = normalized[:sep]
    data = []
    for char in normalized[sep + 1:]:
        if char not in _CHARSET_MAP:
            raise ValidationError(f"Invalid bech32 character {char!r}")
        data.append(_CHARSET_MAP[char])

    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValidationError("Invalid bech32 checksum")

    return hrp, data[:-_CHECKSUM_LEN]


def encode_key(key_hex: str, prefix: str) -> str:
    """Encode a 32-byte hex key as NIP-19 bech32 (``npub1...`` / ``nsec1...``)."""
    if not isinstance(key_hex, str) or not _HEX_KEY_RE.match(key_hex):
        raise ValidationError("Key must be 64 hex characters")
    hrp = prefix.lower()
    words = convert_bits(list(bytes.fromhex(key_hex)), 8, 5, True)
    checksum = _create_checksum(hrp, words)
    return hrp + "1" + "".join(BECH32_CHARSET[w] for w in words + checksum)


# ============================================================
# NORMALIZATION
# ============================================================

def normalize_key(key: str, expected_prefix: str) -> str:
    """Normalize a configured key to 64-char lower-case hex.

    Args:
        key: Hex key or bech32 key
        expected_prefix: Bech32 prefix the key must carry ('npub' or 'nsec')

    Returns:
        Lower-case hex string of the 32 key bytes

    Raises:
        ValidationError: If the key is empty, malformed, carries the wrong
            prefix, fails its checksum, or does not decode to 32 bytes.
    """
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("Nostr key must be a non-empty string")
    trimmed = key.strip()
    if _HEX_KEY_RE.match(trimmed):
        return trimmed.lower()

    hrp, data = decode_bech32(trimmed)
    if hrp != expected_prefix.lower():
        raise ValidationError(f"Expected bech32 prefix {expected_prefix}, got {hrp}")
    key_bytes = convert_bits(data, 5, 8, False)
    if len(key_bytes) != 32:
        raise ValidationError(f"Invalid {expected_prefix} key length: {len(key_bytes)} bytes")
    return bytes(key_bytes).hex()


def derive_public_key(secret_hex: str) -> str:
    """Return the x-only (BIP-340) public key for a hex secret key."""
    secret = normalize_key(secret_hex, SECRET_PREFIX)
    try:
        return PrivateKey(bytes.fromhex(secret)).public_key_xonly.format().hex()
    except ValueError as e:
        raise ValidationError(f"Invalid secret key: {e}") from e


@dataclass(frozen=True)
class KeyPair:
    public_key: str
    secret_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key!r}, secret_key='***')"


def load_keypair(public_key: Optional[str], private_key: Optional[str]) -> KeyPair:
    """Normalize the configured key pair.

    Called on every publish; the result is never cached.

    Raises:
        ConfigurationError: If either key is missing.
        ValidationError: If either key is malformed, or the public key
            does not belong to the secret key.
    """
    if not public_key:
        raise ConfigurationError("Missing Nostr public key (TGNOSTR_PUBLIC_KEY)")
    if not private_key:
        raise ConfigurationError("Missing Nostr private key (TGNOSTR_PRIVATE_KEY)")
    pair = KeyPair(
        public_key=normalize_key(public_key, PUBLIC_PREFIX),
        secret_key=normalize_key(private_key, SECRET_PREFIX),
    )
    # A signature by another key would never verify against pubkey
    if derive_public_key(pair.secret_key) != pair.public_key:
        raise ValidationError("Configured public key does not match the private key")
    return pair
