"""Decode streamed log entries into :class:`DomainEvent` objects.

Two payload shapes are accepted:

* raw JSON-RPC logs (``topics`` + ``data``), decoded against the configured
  event signature with ``eth_abi``;
* logs already decoded by the provider, carrying ``args`` (mapping or
  positional sequence) and optionally ``eventName``.

Providers do not agree on argument names, so the subject account is looked
up through an ordered list of alternates before giving up.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from eth_abi import decode as abi_decode

from premium_sync.core.address import ChainAddress, is_zero_address, normalize
from premium_sync.core.errors import DecodeError, InvalidAddress
from premium_sync.core.models import DomainEvent, LogPosition

from .signature import EventSignature

logger = logging.getLogger(__name__)

FieldKey = Union[str, int]

# Ordered alternates; an int is a positional argument index.
SUBJECT_FIELDS: tuple[FieldKey, ...] = ("player", "user", "account", 0)
COUNTERPARTY_FIELDS: tuple[FieldKey, ...] = ("referrer", 1)


@dataclass(frozen=True)
class DecodeResult:
    """Tagged decode outcome: exactly one of ``event`` / ``error`` is set."""

    event: DomainEvent | None = None
    error: DecodeError | None = None

    @classmethod
    def ok(cls, event: DomainEvent) -> DecodeResult:
        return cls(event=event)

    @classmethod
    def err(cls, error: DecodeError) -> DecodeResult:
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.event is not None


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value[:2].lower() == "0x" else value
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise DecodeError(f"Invalid hex payload: {value!r}") from exc
    raise DecodeError(f"Unsupported payload type: {type(value).__name__}")


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value:
        try:
            return int(value, 16) if value[:2].lower() == "0x" else int(value)
        except ValueError:
            return None
    return None


def _topics(raw: Mapping[str, Any]) -> list[Any]:
    topics = raw.get("topics")
    if topics is None:
        return []
    if not isinstance(topics, (list, tuple)):
        raise DecodeError(f"Log topics is not a list: {type(topics).__name__}")
    return list(topics)


def _position(raw: Mapping[str, Any]) -> LogPosition:
    tx_hash = raw.get("transactionHash")
    if isinstance(tx_hash, (bytes, bytearray)):
        tx_hash = "0x" + bytes(tx_hash).hex()
    return LogPosition(
        block_number=_to_int(raw.get("blockNumber")),
        log_index=_to_int(raw.get("logIndex")),
        transaction_hash=tx_hash.lower() if isinstance(tx_hash, str) else None,
    )


class LogDecoder:
    """Decoder bound to a single event signature.

    Parameters
    ----------
    signature:
        The event the subscription is filtered on. Logs for any other
        event are rejected with :class:`DecodeError`.
    subject_fields / counterparty_fields:
        Ordered alternate argument names (or positional indexes).
    """

    def __init__(
        self,
        signature: EventSignature,
        subject_fields: Sequence[FieldKey] = SUBJECT_FIELDS,
        counterparty_fields: Sequence[FieldKey] = COUNTERPARTY_FIELDS,
    ) -> None:
        self._signature = signature
        self._topic0 = signature.topic0
        self._subject_fields = tuple(subject_fields)
        self._counterparty_fields = tuple(counterparty_fields)

    @property
    def signature(self) -> EventSignature:
        return self._signature

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decode(self, raw_log: Mapping[str, Any]) -> DomainEvent:
        """Decode *raw_log* or raise :class:`DecodeError`."""
        if not isinstance(raw_log, Mapping):
            raise DecodeError(f"Log entry is not a mapping: {type(raw_log).__name__}")

        self._check_event(raw_log)
        args, positional = self._extract_args(raw_log)

        subject_raw = self._lookup(args, self._subject_fields, positional)
        if subject_raw is None:
            raise DecodeError(
                f"No subject field in {self._signature.name} log "
                f"(tried {', '.join(map(str, self._subject_fields))})"
            )
        try:
            subject = normalize(subject_raw)
        except InvalidAddress as exc:
            raise DecodeError(f"Malformed subject address: {exc}") from exc

        return DomainEvent(
            subject_address=subject,
            counterparty_address=self._counterparty(args, positional),
            observed_at=_position(raw_log),
        )

    def try_decode(self, raw_log: Mapping[str, Any]) -> DecodeResult:
        """Decode *raw_log* without raising.

        Unexpected failures on oddly shaped payloads are reported as a
        :class:`DecodeError` too, so one bad log never escapes the caller.
        """
        try:
            return DecodeResult.ok(self.decode(raw_log))
        except DecodeError as exc:
            return DecodeResult.err(exc)
        except Exception as exc:
            error = DecodeError(f"Cannot decode log: {type(exc).__name__}: {exc}")
            error.__cause__ = exc
            return DecodeResult.err(error)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_event(self, raw: Mapping[str, Any]) -> None:
        topics = _topics(raw)
        if topics:
            topic0 = "0x" + _to_bytes(topics[0]).hex()
            if topic0 != self._topic0:
                raise DecodeError(
                    f"Unexpected topic0 {topic0} (want {self._topic0} for {self._signature.canonical})"
                )
        event_name = raw.get("eventName") or raw.get("event")
        if isinstance(event_name, str) and event_name != self._signature.name:
            raise DecodeError(f"Unexpected event {event_name!r} (want {self._signature.name!r})")

    def _extract_args(self, raw: Mapping[str, Any]) -> tuple[list[tuple[str, Any]], bool]:
        """Return ordered ``(name, value)`` pairs and whether they are positional.

        Provider mappings are keyed by name only, so an integer field key
        matches them only through a literal ``"0"``-style key.
        """
        provided = raw.get("args")
        if isinstance(provided, Mapping):
            return [(str(k), v) for k, v in provided.items()], False
        if isinstance(provided, Sequence) and not isinstance(provided, (str, bytes)):
            names = [p.name for p in self._signature.params]
            if len(names) != len(provided):
                names = [f"arg{i}" for i in range(len(provided))]
            return list(zip(names, provided)), True
        return self._decode_abi(raw), True

    def _decode_abi(self, raw: Mapping[str, Any]) -> list[tuple[str, Any]]:
        topics = _topics(raw)[1:]
        values: dict[str, Any] = {}

        for param, topic in zip(self._signature.indexed_params, topics):
            if param.is_dynamic:
                # Only the hash is on chain for indexed dynamic values.
                values[param.name] = "0x" + _to_bytes(topic).hex()
                continue
            try:
                (values[param.name],) = abi_decode([param.abi_type], _to_bytes(topic))
            except DecodeError:
                raise
            except Exception as exc:
                raise DecodeError(f"Cannot decode indexed {param.name}: {exc}") from exc

        data_params = self._signature.data_params
        data = raw.get("data")
        if data_params and data not in (None, "", "0x", b""):
            try:
                decoded = abi_decode([p.abi_type for p in data_params], _to_bytes(data))
            except DecodeError:
                raise
            except Exception as exc:
                raise DecodeError(f"Cannot decode log data: {exc}") from exc
            values.update(zip((p.name for p in data_params), decoded))

        # Declaration order with gaps as None so positional fallbacks line up.
        return [(p.name, values.get(p.name)) for p in self._signature.params]

    @staticmethod
    def _lookup(
        args: list[tuple[str, Any]], fields: Sequence[FieldKey], positional: bool
    ) -> Any:
        for key in fields:
            if isinstance(key, int) and positional:
                value = args[key][1] if 0 <= key < len(args) else None
            else:
                key = str(key)
                value = next((v for name, v in args if name == key), None)
            if value not in (None, ""):
                return value
        return None

    def _counterparty(
        self, args: list[tuple[str, Any]], positional: bool
    ) -> ChainAddress | None:
        raw = self._lookup(args, self._counterparty_fields, positional)
        if raw is None:
            return None
        try:
            address = normalize(raw)
        except InvalidAddress:
            # Informational only; never drop an upgrade over it.
            logger.debug("Ignoring non-address counterparty %r", raw)
            return None
        return None if is_zero_address(address) else address
