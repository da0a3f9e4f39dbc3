"""Content hash helpers.

Ledger events and transactions carry only the 32-byte sha2-256 digest of a
stored document; the storage network addresses it by the base58btc multihash
(``Qm...``, CIDv0). These helpers convert between the two and reject hashes
that are obviously malformed before any network I/O happens.

This is NOT a full multiformats implementation: only sha2-256 multihashes
(code 0x12, length 0x20) are supported, which is what the storage nodes
produce for ``add``.
"""

from __future__ import annotations

import re
from typing import Union

from .errors import ParameterError

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {c: i for i, c in enumerate(BASE58_ALPHABET)}

SHA2_256_CODE = 0x12
SHA2_256_LENGTH = 0x20

_HASH_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)


def b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n > 0:
        n, rem = divmod(n, 58)
        out.append(BASE58_ALPHABET[rem])
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def b58decode(text: str) -> bytes:
    n = 0
    for c in text:
        try:
            n = n * 58 + _BASE58_INDEX[c]
        except KeyError:
            raise ParameterError(f"Invalid base58 character {c!r}") from None
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip("1"))
    return b"\x00" * pad + body


def is_content_hash(value: object) -> bool:
    """True if *value* looks like a sha2-256 CIDv0 hash."""
    return isinstance(value, str) and bool(_HASH_RE.match(value.strip()))


def validate_hash(value: object) -> str:
    """Return the normalized hash or raise ParameterError."""
    if not isinstance(value, str) or not value.strip():
        raise ParameterError("missing content hash")
    h = value.strip()
    if not _HASH_RE.match(h):
        raise ParameterError(f"invalid content hash format: {h!r}")
    return h


def encode(digest: Union[bytes, str]) -> str:
    """Build the base58 multihash for a sha2-256 *digest* (bytes or hex)."""
    if isinstance(digest, str):
        text = digest[2:] if digest.lower().startswith("0x") else digest
        try:
            digest = bytes.fromhex(text.rjust(SHA2_256_LENGTH * 2, "0"))
        except ValueError as e:
            raise ParameterError(f"digest is not hex: {text!r}") from e
    if len(digest) != SHA2_256_LENGTH:
        raise ParameterError(f"expected a {SHA2_256_LENGTH}-byte digest, got {len(digest)}")
    return b58encode(bytes([SHA2_256_CODE, SHA2_256_LENGTH]) + digest)


def decode(content_hash: str) -> bytes:
    """Return the raw sha2-256 digest carried by *content_hash*."""
    raw = b58decode(validate_hash(content_hash))
    if len(raw) != SHA2_256_LENGTH + 2 or raw[0] != SHA2_256_CODE or raw[1] != SHA2_256_LENGTH:
        raise ParameterError(f"not a sha2-256 multihash: {content_hash!r}")
    return raw[2:]
