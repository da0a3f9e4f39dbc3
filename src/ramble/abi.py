"""Ledger value normalisation.

Market ids travel in several shapes: signed hex (``-0xd7d2...``) as returned
by the markets contract, unsigned 256-bit words as they appear in log topics,
plain ints from callers. Everything is reduced to the unsigned 256-bit word
so ids compare equal regardless of how they were written.
"""

from __future__ import annotations

from typing import Any, Union

from .errors import ParameterError

WORD_BITS = 256
WORD_MOD = 1 << WORD_BITS

IntLike = Union[int, str, bytes]


def to_word(value: IntLike) -> int:
    """Reduce *value* to an unsigned 256-bit integer (two's complement)."""
    if isinstance(value, bool):
        raise ParameterError(f"not an integer value: {value!r}")
    if isinstance(value, int):
        n = value
    elif isinstance(value, (bytes, bytearray)):
        n = int.from_bytes(value, "big")
    elif isinstance(value, str):
        text = value.strip()
        negative = text.startswith("-")
        if negative:
            text = text[1:]
        try:
            if text.lower().startswith("0x"):
                n = int(text[2:] or "0", 16)
            else:
                n = int(text, 10)
        except ValueError as e:
            raise ParameterError(f"not an integer value: {value!r}") from e
        if negative:
            n = -n
    else:
        raise ParameterError(f"not an integer value: {value!r}")
    return n % WORD_MOD


def to_hex(value: IntLike, prefix: bool = True) -> str:
    """Encode *value* as a zero-padded 32-byte hex word."""
    word = format(to_word(value), "064x")
    return f"0x{word}" if prefix else word


def same_id(a: Any, b: Any) -> bool:
    """Compare two ids after normalisation."""
    try:
        return to_word(a) == to_word(b)
    except ParameterError:
        return False


def to_number(value: IntLike) -> int:
    """Parse a block number given as int, hex string or decimal string."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError as e:
            raise ParameterError(f"not a block number: {value!r}") from e
    raise ParameterError(f"not a block number: {value!r}")


def to_quantity(value: IntLike) -> str:
    """Encode a number as a JSON-RPC quantity (``0x``-prefixed, no padding)."""
    return hex(to_number(value))
