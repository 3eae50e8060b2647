"""Human-readable event signature parsing.

Turns ``Register(address indexed player, address indexed referrer)`` into
the canonical ``Register(address,address)`` form and its ``topic0`` hash,
which is what the log subscription filters on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from web3 import Web3

from premium_sync.core.errors import ConfigError

_SIGNATURE = re.compile(r"^\s*(?:event\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*;?\s*$")
_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DYNAMIC_TYPES = ("string", "bytes")


@dataclass(frozen=True)
class EventParam:
    abi_type: str
    name: str
    indexed: bool

    @property
    def is_dynamic(self) -> bool:
        """Indexed dynamic values are stored as a hash, not the value."""
        return self.abi_type in _DYNAMIC_TYPES or self.abi_type.endswith("]")


@dataclass(frozen=True)
class EventSignature:
    name: str
    params: tuple[EventParam, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(p.abi_type for p in self.params)})"

    @property
    def topic0(self) -> str:
        """Lower-case ``0x`` keccak-256 hash of the canonical signature."""
        return Web3.to_hex(Web3.keccak(text=self.canonical)).lower()

    @property
    def indexed_params(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def data_params(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if not p.indexed)


def _normalize_type(abi_type: str) -> str:
    if abi_type == "uint":
        return "uint256"
    if abi_type == "int":
        return "int256"
    return abi_type


def parse_event_signature(text: str) -> EventSignature:
    """Parse a human-readable event declaration.

    Parameter names are optional; unnamed parameters get ``arg<N>``.

    Raises:
        ConfigError: If *text* is not a recognisable event declaration.
    """
    match = _SIGNATURE.match(text or "")
    if match is None:
        raise ConfigError(f"Malformed event signature: {text!r}")

    name, body = match.group(1), match.group(2).strip()
    params: list[EventParam] = []
    if body:
        for position, chunk in enumerate(body.split(",")):
            tokens = chunk.split()
            if not tokens:
                raise ConfigError(f"Empty parameter in event signature: {text!r}")
            abi_type = _normalize_type(tokens[0])
            rest = tokens[1:]
            indexed = bool(rest) and rest[0] == "indexed"
            if indexed:
                rest = rest[1:]
            if len(rest) > 1 or (rest and not _IDENT.match(rest[0])):
                raise ConfigError(f"Cannot parse parameter {chunk.strip()!r} in {text!r}")
            params.append(
                EventParam(
                    abi_type=abi_type,
                    name=rest[0] if rest else f"arg{position}",
                    indexed=indexed,
                )
            )

    if sum(1 for p in params if p.indexed) > 3:
        raise ConfigError(f"Event {name} declares more than 3 indexed parameters")

    return EventSignature(name=name, params=tuple(params))
