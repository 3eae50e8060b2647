"""Streaming log subscription over a JSON-RPC WebSocket.

Architecture
------------
* One asyncio task per open handle.
* The task sends ``eth_subscribe("logs", {address, topics: [topic0]})`` and
  hands every ``eth_subscription`` notification to the batch callback.
  The next message is not read until the callback returns, so batches are
  processed strictly one after another.
* Transport failures are wrapped in :class:`TransportError` and given to the
  error callback; they never propagate to the caller.
* After a failure the task reconnects with capped exponential backoff until
  ``ReconnectConfig.max_attempts`` consecutive failures, then marks the
  handle FAILED and stops delivering. ``max_attempts = 0`` never reconnects.
* Handles are only ever closed by :meth:`SubscriptionChannel.close`.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import websockets

from premium_sync.core.address import ChainAddress, normalize
from premium_sync.core.config import ReconnectConfig
from premium_sync.core.enums import ChannelHealth
from premium_sync.core.errors import ConfigError, InvalidAddress, TransportError
from premium_sync.core.interfaces import LogBatchHandler, TransportErrorHandler
from premium_sync.observability.metrics import record_reconnect

from .signature import EventSignature, parse_event_signature

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


def _default_connect(endpoint: str) -> Awaitable[Any]:
    return websockets.connect(
        endpoint,
        ping_interval=20,
        ping_timeout=20,
        close_timeout=10,
        max_size=10 * 1024 * 1024,
    )


@dataclass(frozen=True)
class ChannelConfig:
    contract_address: str
    endpoint: str
    event_signature: str
    subscribe_timeout_seconds: float = 15.0


class SubscriptionHandle:
    """One open subscription and its runtime state."""

    def __init__(
        self,
        endpoint: str,
        contract_address: ChainAddress,
        signature: EventSignature,
        subscribe_timeout: float,
    ) -> None:
        self.handle_id = uuid.uuid4().hex[:12]
        self.endpoint = endpoint
        self.contract_address = contract_address
        self.signature = signature
        self.subscribe_timeout = subscribe_timeout

        self.health = ChannelHealth.CONNECTING
        self.subscription_id: str | None = None
        self.reconnect_attempts = 0  # Consecutive failures since last subscribe
        self.last_error: str | None = None
        self.batches_delivered = 0

        self._closed = False
        self._delivering = False
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def is_active(self) -> bool:
        """True while the handle may still deliver batches."""
        return not self._closed and self.health != ChannelHealth.FAILED

    def subscribe_request(self, request_id: int) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {"address": self.contract_address, "topics": [self.signature.topic0]},
            ],
        }

    def __repr__(self) -> str:
        return (
            f"<SubscriptionHandle(id={self.handle_id}, contract={self.contract_address}, "
            f"health={self.health.value}, open={self.is_open})>"
        )


class SubscriptionChannel:
    """Opens and closes log subscriptions.

    Parameters
    ----------
    reconnect:
        Backoff policy applied after transport errors.
    connect:
        Coroutine factory returning a connected WebSocket for an endpoint.
        Defaults to :func:`websockets.connect`.
    sleep:
        Awaitable used for backoff delays.
    """

    def __init__(
        self,
        reconnect: ReconnectConfig | None = None,
        connect: Callable[[str], Awaitable[Any]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._reconnect = reconnect or ReconnectConfig()
        self._connect = connect or _default_connect
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(
        self,
        config: ChannelConfig,
        on_logs: LogBatchHandler,
        on_error: TransportErrorHandler,
    ) -> SubscriptionHandle:
        """Validate *config* and start streaming in a background task.

        Raises:
            ConfigError: If the endpoint is not ``ws://``/``wss://``, the
                contract address is malformed, or the event signature
                cannot be parsed.
        """
        endpoint = (config.endpoint or "").strip()
        if not endpoint.lower().startswith(("ws://", "wss://")):
            raise ConfigError(f"Endpoint is not a WebSocket URL: {endpoint!r}")
        try:
            contract = normalize(config.contract_address)
        except InvalidAddress as exc:
            raise ConfigError(f"Invalid contract address: {exc}") from exc
        signature = parse_event_signature(config.event_signature)

        handle = SubscriptionHandle(
            endpoint=endpoint,
            contract_address=contract,
            signature=signature,
            subscribe_timeout=config.subscribe_timeout_seconds,
        )
        handle._task = asyncio.create_task(
            self._run(handle, on_logs, on_error),
            name=f"subscription:{handle.handle_id}",
        )
        logger.info(
            "Opened subscription %s: contract=%s event=%s",
            handle.handle_id, contract, signature.canonical,
        )
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Release the connection. Safe to call any number of times.

        No batch is delivered after this returns; a callback already in
        progress is allowed to finish.
        """
        if handle._closed:
            return
        handle._closed = True
        handle.health = ChannelHealth.CLOSED

        ws = handle._ws
        if ws is not None and handle.subscription_id:
            unsubscribe = {
                "jsonrpc": "2.0",
                "id": next(_request_ids),
                "method": "eth_unsubscribe",
                "params": [handle.subscription_id],
            }
            try:
                await asyncio.wait_for(ws.send(json.dumps(unsubscribe)), timeout=2.0)
            except Exception:
                logger.debug("eth_unsubscribe failed for %s", handle.handle_id, exc_info=True)

        task = handle._task
        if task is not None and not task.done() and not handle._delivering:
            if task is not asyncio.current_task():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if ws is not None:
            await self._close_socket(ws)
        logger.info("Closed subscription %s", handle.handle_id)

    # ------------------------------------------------------------------
    # Stream loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        handle: SubscriptionHandle,
        on_logs: LogBatchHandler,
        on_error: TransportErrorHandler,
    ) -> None:
        while not handle._closed:
            try:
                await self._session(handle, on_logs)
                return  # Session only ends cleanly once the handle is closed
            except asyncio.CancelledError:
                raise
            except TransportError as exc:
                error = exc
            except Exception as exc:
                error = TransportError(f"Unexpected stream failure: {exc}")

            if handle._closed:
                return

            handle.reconnect_attempts += 1
            handle.last_error = str(error)
            error.attempt = handle.reconnect_attempts
            try:
                on_error(error)
            except Exception:
                logger.exception("Transport error callback failed for %s", handle.handle_id)

            if handle.reconnect_attempts > self._reconnect.max_attempts:
                handle.health = ChannelHealth.FAILED
                logger.critical(
                    "Subscription %s gave up after %d consecutive failures; no further logs will be delivered.",
                    handle.handle_id, handle.reconnect_attempts,
                )
                return

            backoff = self._reconnect.backoff(handle.reconnect_attempts)
            handle.health = ChannelHealth.RECONNECTING
            logger.warning(
                "Subscription %s reconnecting (attempt %d/%d, backoff %.1fs): %s",
                handle.handle_id, handle.reconnect_attempts,
                self._reconnect.max_attempts, backoff, error,
            )
            record_reconnect()
            await self._sleep(backoff)

    async def _session(self, handle: SubscriptionHandle, on_logs: LogBatchHandler) -> None:
        """Run one connection until the handle closes or the transport fails."""
        handle.subscription_id = None
        try:
            ws = await self._connect(handle.endpoint)
        except Exception as exc:
            raise TransportError(f"Connect to {handle.endpoint} failed: {exc}") from exc

        handle._ws = ws
        try:
            if handle._closed:
                return
            subscription_id = await self._subscribe(handle, ws)
            handle.subscription_id = subscription_id
            handle.health = ChannelHealth.HEALTHY
            handle.reconnect_attempts = 0
            logger.info(
                "Subscription %s active (provider id %s)", handle.handle_id, subscription_id,
            )

            while not handle._closed:
                message = await ws.recv()
                batch = self._parse_notification(message, subscription_id)
                if not batch or handle._closed:
                    continue
                handle._delivering = True
                try:
                    await on_logs(batch)
                except Exception:
                    logger.exception("Log batch handler failed on %s", handle.handle_id)
                finally:
                    handle._delivering = False
                handle.batches_delivered += 1
        except (asyncio.CancelledError, TransportError):
            raise
        except Exception as exc:
            if handle._closed:
                return
            raise TransportError(f"Stream on {handle.endpoint} failed: {exc}") from exc
        finally:
            handle._ws = None
            await self._close_socket(ws)

    async def _subscribe(self, handle: SubscriptionHandle, ws: Any) -> str:
        request_id = next(_request_ids)
        await ws.send(json.dumps(handle.subscribe_request(request_id)))

        async def _await_confirmation() -> str:
            while True:
                try:
                    reply = json.loads(await ws.recv())
                except json.JSONDecodeError:
                    continue
                if not isinstance(reply, dict) or reply.get("id") != request_id:
                    continue
                if "error" in reply:
                    raise TransportError(f"eth_subscribe rejected: {reply['error']}")
                return str(reply.get("result"))

        try:
            return await asyncio.wait_for(_await_confirmation(), timeout=handle.subscribe_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"No eth_subscribe confirmation within {handle.subscribe_timeout:.0f}s"
            ) from exc

    @staticmethod
    def _parse_notification(message: str | bytes, subscription_id: str) -> list[dict[str, Any]]:
        try:
            payload = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Ignoring non-JSON message on log stream")
            return []
        if not isinstance(payload, dict) or payload.get("method") != "eth_subscription":
            return []
        params = payload.get("params")
        if not isinstance(params, Mapping):
            logger.warning("Ignoring malformed eth_subscription notification: params is %s", type(params).__name__)
            return []
        if params.get("subscription") not in (None, subscription_id):
            return []
        result = params.get("result")
        if isinstance(result, dict):
            return [result]
        if isinstance(result, list):
            return [entry for entry in result if isinstance(entry, dict)]
        logger.warning("Ignoring eth_subscription notification without log entries")
        return []

    @staticmethod
    async def _close_socket(ws: Any) -> None:
        try:
            await ws.close()
        except Exception:
            logger.debug("Error closing WebSocket", exc_info=True)
