"""Account address normalization.

Every repository lookup goes through :func:`normalize` so that checksum
casing from providers or users never causes a missed match.
"""

from __future__ import annotations

import re
from typing import NewType

from .errors import InvalidAddress

ChainAddress = NewType("ChainAddress", str)

ZERO_ADDRESS = ChainAddress("0x" + "0" * 40)

_HEX_ADDRESS = re.compile(r"0[xX]([0-9a-fA-F]{40})")


def normalize(raw: str | bytes) -> ChainAddress:
    """Return the canonical lower-case ``0x`` form of *raw*.

    Accepts a hex string (any casing, no surrounding whitespace) or
    exactly 20 raw bytes.

    Raises:
        InvalidAddress: If *raw* is not a well-formed address.
    """
    if isinstance(raw, (bytes, bytearray)):
        if len(raw) != 20:
            raise InvalidAddress(raw, f"expected 20 bytes, got {len(raw)}")
        return ChainAddress("0x" + bytes(raw).hex())

    if not isinstance(raw, str):
        raise InvalidAddress(raw, f"unsupported type {type(raw).__name__}")

    match = _HEX_ADDRESS.fullmatch(raw)
    if match is None:
        raise InvalidAddress(raw)
    return ChainAddress("0x" + match.group(1).lower())


def is_zero_address(address: str) -> bool:
    return address == ZERO_ADDRESS
