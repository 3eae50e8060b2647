"""Start/stop control surface for the premium upgrade listener.

One :class:`ListenerLifecycle` is built by the composition root
(:mod:`premium_sync.main`) and holds at most one open subscription. The
listener is an optional enhancement: missing or broken configuration is
logged and leaves it idle instead of failing the host process.

States::

    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from premium_sync.chain.decoder import LogDecoder
from premium_sync.chain.signature import parse_event_signature
from premium_sync.chain.subscription import (
    ChannelConfig,
    SubscriptionChannel,
    SubscriptionHandle,
)
from premium_sync.core.config import ChainConfig
from premium_sync.core.enums import ApplyOutcome, ChannelHealth, ListenerState
from premium_sync.core.errors import ConfigError, TransportError
from premium_sync.core.models import LogPosition
from premium_sync.observability.logger import new_trace_id
from premium_sync.observability.metrics import (
    record_decode_error,
    record_transport_error,
    update_listener_running,
)
from premium_sync.reconciliation.engine import ReconciliationEngine

logger = logging.getLogger(__name__)


class ListenerHealth(BaseModel):
    """Snapshot reported to whatever supervises the listener."""

    state: ListenerState
    channel_health: ChannelHealth | None = None
    reconnect_attempts: int = 0
    last_transport_error: str | None = None
    batches_delivered: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    decode_errors: int = 0
    out_of_order: int = 0

    @property
    def healthy(self) -> bool:
        """Idle counts as healthy; a running listener needs a live channel."""
        if self.state != ListenerState.RUNNING:
            return self.state == ListenerState.IDLE
        return self.channel_health in (
            ChannelHealth.CONNECTING,
            ChannelHealth.HEALTHY,
            ChannelHealth.RECONNECTING,
        )


class ListenerLifecycle:
    """Owns the single subscription and wires it to decoding + reconciliation.

    Parameters
    ----------
    chain_config:
        Contract address, endpoints and event signature.
    channel:
        Opens/closes the streaming subscription.
    engine:
        Applies decoded events to the account store.
    """

    def __init__(
        self,
        chain_config: ChainConfig,
        channel: SubscriptionChannel,
        engine: ReconciliationEngine,
    ) -> None:
        self._config = chain_config
        self._channel = channel
        self._engine = engine

        self._state = ListenerState.IDLE
        self._handle: SubscriptionHandle | None = None
        self._decoder: LogDecoder | None = None
        self._counts: dict[str, int] = {
            "applied": 0,
            "skipped": 0,
            "failed": 0,
            "decode_errors": 0,
            "out_of_order": 0,
        }
        self._last_position: LogPosition | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ListenerState.RUNNING

    @property
    def handle(self) -> SubscriptionHandle | None:
        return self._handle

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the subscription. Idempotent and never raises."""
        if self._state in (ListenerState.RUNNING, ListenerState.STARTING):
            return
        if self._state == ListenerState.STOPPING:
            logger.warning("Listener start() ignored while stopping")
            return

        self._state = ListenerState.STARTING

        endpoint = self._config.resolve_endpoint()
        if endpoint is None:
            logger.warning(
                "No WebSocket endpoint configured (ws_url/rpc_url). Skipping blockchain event listener."
            )
            self._state = ListenerState.IDLE
            return

        try:
            self._decoder = LogDecoder(parse_event_signature(self._config.event_signature))
            self._handle = await self._channel.open(
                ChannelConfig(
                    contract_address=self._config.contract_address,
                    endpoint=endpoint,
                    event_signature=self._config.event_signature,
                    subscribe_timeout_seconds=self._config.subscribe_timeout_seconds,
                ),
                on_logs=self._on_logs,
                on_error=self._on_error,
            )
        except ConfigError as exc:
            logger.warning("Blockchain event listener not started: %s", exc)
            self._decoder = None
            self._state = ListenerState.IDLE
            return
        except Exception:
            logger.exception("Failed to start blockchain event listener")
            self._decoder = None
            self._state = ListenerState.IDLE
            return

        self._state = ListenerState.RUNNING
        update_listener_running(True)
        logger.info(
            "Listening for %s on %s", self._decoder.signature.canonical, self._handle.contract_address,
        )

    async def stop(self) -> None:
        """Close the subscription. Idempotent and never raises."""
        if self._state in (ListenerState.IDLE, ListenerState.STOPPING):
            return

        self._state = ListenerState.STOPPING
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                await self._channel.close(handle)
            logger.info("Stopped blockchain event listener.")
        except Exception:
            logger.exception("Error while closing blockchain event listener")
        finally:
            self._decoder = None
            self._last_position = None
            self._state = ListenerState.IDLE
            update_listener_running(False)

    def health(self) -> ListenerHealth:
        handle = self._handle
        return ListenerHealth(
            state=self._state,
            channel_health=handle.health if handle else None,
            reconnect_attempts=handle.reconnect_attempts if handle else 0,
            last_transport_error=handle.last_error if handle else None,
            batches_delivered=handle.batches_delivered if handle else 0,
            **self._counts,
        )

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    async def _on_logs(self, batch: list[dict[str, Any]]) -> None:
        decoder = self._decoder
        if decoder is None:
            return
        new_trace_id()
        for index, raw in enumerate(batch):
            if self._state is not ListenerState.RUNNING:
                break  # stop() landed mid-batch
            try:
                await self._process(decoder, raw)
            except Exception:
                self._counts["failed"] += 1
                logger.exception("Error processing log %d of %d in batch", index + 1, len(batch))

    async def _process(self, decoder: LogDecoder, raw: dict[str, Any]) -> None:
        decoded = decoder.try_decode(raw)
        if not decoded.is_ok:
            self._counts["decode_errors"] += 1
            record_decode_error()
            logger.warning("Dropping undecodable log: %s", decoded.error)
            return

        self._track_position(decoded.event.observed_at)
        result = await self._engine.apply(decoded.event)
        if result.outcome is ApplyOutcome.APPLIED:
            self._counts["applied"] += 1
        elif result.outcome is ApplyOutcome.FAILED:
            self._counts["failed"] += 1
        else:
            self._counts["skipped"] += 1

    def _track_position(self, position: LogPosition) -> None:
        if position.block_number is None:
            return
        last = self._last_position
        if last is not None and position < last:
            self._counts["out_of_order"] += 1
            logger.info("Log at %s arrived after %s (replayed or reordered by the provider)", position, last)
            return
        self._last_position = position

    def _on_error(self, error: TransportError) -> None:
        record_transport_error()
        logger.error("Error in log subscription (attempt %d): %s", error.attempt, error)
