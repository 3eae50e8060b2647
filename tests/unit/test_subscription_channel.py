"""Test SubscriptionChannel against a scripted WebSocket provider."""

import asyncio
import json

import pytest

from premium_sync.chain.subscription import ChannelConfig, SubscriptionChannel
from premium_sync.core.config import DEFAULT_EVENT_SIGNATURE, ReconnectConfig
from premium_sync.core.enums import ChannelHealth
from premium_sync.core.errors import ConfigError, TransportError

from fakes import (
    CONTRACT,
    FakeProvider,
    FakeWebSocket,
    RecordingSleep,
    make_raw_log,
    wait_until,
)


def _config(**overrides) -> ChannelConfig:
    values = {
        "contract_address": CONTRACT.upper().replace("0X", "0x"),
        "endpoint": "wss://node.example/ws",
        "event_signature": DEFAULT_EVENT_SIGNATURE,
    }
    values.update(overrides)
    return ChannelConfig(**values)


class Recorder:
    """Collects delivered batches and transport errors."""

    def __init__(self) -> None:
        self.batches: list[list[dict]] = []
        self.errors: list[TransportError] = []

    async def on_logs(self, batch):
        self.batches.append(batch)

    def on_error(self, error):
        self.errors.append(error)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def sleep():
    return RecordingSleep()


class TestOpenValidation:
    @pytest.mark.parametrize("endpoint", ["", "https://node.example", "node.example:8546"])
    async def test_rejects_non_websocket_endpoint(self, endpoint, recorder):
        channel = SubscriptionChannel(connect=FakeProvider(FakeWebSocket()).connect)
        with pytest.raises(ConfigError, match="not a WebSocket URL"):
            await channel.open(_config(endpoint=endpoint), recorder.on_logs, recorder.on_error)

    async def test_rejects_bad_contract(self, recorder):
        provider = FakeProvider(FakeWebSocket())
        channel = SubscriptionChannel(connect=provider.connect)
        with pytest.raises(ConfigError, match="Invalid contract address"):
            await channel.open(_config(contract_address="0x1234"), recorder.on_logs, recorder.on_error)
        assert provider.endpoints == []

    async def test_rejects_bad_signature(self, recorder):
        channel = SubscriptionChannel(connect=FakeProvider(FakeWebSocket()).connect)
        with pytest.raises(ConfigError):
            await channel.open(_config(event_signature="Register"), recorder.on_logs, recorder.on_error)


class TestStreaming:
    async def test_subscribes_with_contract_and_topic0(self, recorder, signature):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)

        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.HEALTHY)

        request = ws.sent[0]
        assert request["method"] == "eth_subscribe"
        assert request["params"] == ["logs", {"address": CONTRACT, "topics": [signature.topic0]}]
        assert handle.subscription_id == ws.subscription_id
        assert handle.contract_address == CONTRACT
        await channel.close(handle)

    async def test_delivers_batches_in_order(self, recorder, signature):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.HEALTHY)

        ws.push_logs(make_raw_log(signature, block_number=1))
        ws.push_logs([make_raw_log(signature, block_number=2), make_raw_log(signature, block_number=3)])
        await wait_until(lambda: len(recorder.batches) == 2)

        blocks = [[log["blockNumber"] for log in batch] for batch in recorder.batches]
        assert blocks == [["0x1"], ["0x2", "0x3"]]
        assert handle.batches_delivered == 2
        assert recorder.errors == []
        await channel.close(handle)

    async def test_batches_never_overlap(self, signature):
        ws = FakeWebSocket()
        active = 0
        peak = 0
        seen = []

        async def slow(batch):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            seen.append(batch[0]["blockNumber"])
            active -= 1

        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), slow, lambda e: None)
        for block in range(1, 5):
            ws.push_logs(make_raw_log(signature, block_number=block))
        await wait_until(lambda: len(seen) == 4)

        assert peak == 1
        assert seen == ["0x1", "0x2", "0x3", "0x4"]
        await channel.close(handle)

    async def test_ignores_noise(self, recorder, signature):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)

        ws.push_raw("not json at all")
        ws.push_raw(json.dumps({"jsonrpc": "2.0", "id": 99, "result": True}))
        ws.push_logs(make_raw_log(signature, block_number=7), subscription_id="0xsomeoneelse")
        ws.push_logs(make_raw_log(signature, block_number=8))
        await wait_until(lambda: len(recorder.batches) == 1)
        await asyncio.sleep(0.02)

        assert recorder.batches[0][0]["blockNumber"] == "0x8"
        assert len(recorder.batches) == 1
        assert recorder.errors == []
        await channel.close(handle)

    @pytest.mark.parametrize(
        "params",
        [
            ["junk"],
            "junk",
            None,
            42,
            {"subscription": "SUB", "result": "junk"},
            {"subscription": "SUB", "result": None},
            {"subscription": "SUB", "result": [1, "x", None]},
        ],
        ids=["list-params", "string-params", "null-params", "int-params",
             "string-result", "null-result", "non-dict-entries"],
    )
    async def test_malformed_notification_is_dropped(self, params, recorder, sleep, signature):
        ws = FakeWebSocket()
        provider = FakeProvider(ws)
        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=0), connect=provider.connect, sleep=sleep,
        )
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.HEALTHY)

        if isinstance(params, dict):
            params = {**params, "subscription": ws.subscription_id}
        ws.push_raw(json.dumps({"jsonrpc": "2.0", "method": "eth_subscription", "params": params}))
        ws.push_logs(make_raw_log(signature, block_number=9))
        await wait_until(lambda: len(recorder.batches) == 1)

        assert recorder.batches[0][0]["blockNumber"] == "0x9"
        assert recorder.errors == []
        assert handle.health is ChannelHealth.HEALTHY
        assert handle.reconnect_attempts == 0
        assert len(provider.endpoints) == 1
        await channel.close(handle)

    async def test_mixed_list_keeps_dict_entries(self, recorder, signature):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)

        ws.push_logs(["junk", make_raw_log(signature, block_number=4), 7])
        await wait_until(lambda: len(recorder.batches) == 1)

        assert [log["blockNumber"] for log in recorder.batches[0]] == ["0x4"]
        await channel.close(handle)

    async def test_handler_failure_does_not_end_stream(self, signature):
        ws = FakeWebSocket()
        delivered = []

        async def flaky(batch):
            delivered.append(batch)
            if len(delivered) == 1:
                raise RuntimeError("handler blew up")

        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), flaky, lambda e: None)
        ws.push_logs(make_raw_log(signature, block_number=1))
        ws.push_logs(make_raw_log(signature, block_number=2))
        await wait_until(lambda: len(delivered) == 2)

        assert handle.health is ChannelHealth.HEALTHY
        assert handle.reconnect_attempts == 0
        await channel.close(handle)


class TestClose:
    async def test_close_is_idempotent_and_unsubscribes(self, recorder):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.HEALTHY)

        await channel.close(handle)
        await channel.close(handle)

        assert ws.methods == ["eth_subscribe", "eth_unsubscribe"]
        assert ws.sent[1]["params"] == [ws.subscription_id]
        assert ws.closed
        assert not handle.is_open
        assert handle.health is ChannelHealth.CLOSED
        assert recorder.errors == []

    async def test_nothing_delivered_after_close(self, recorder, signature):
        ws = FakeWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.HEALTHY)

        await channel.close(handle)
        ws.push_logs(make_raw_log(signature))
        await asyncio.sleep(0.02)

        assert recorder.batches == []

    async def test_close_during_delivery_lets_callback_finish(self, signature):
        ws = FakeWebSocket()
        release = asyncio.Event()
        entered = asyncio.Event()
        finished = []

        async def blocking(batch):
            entered.set()
            await release.wait()
            finished.append(batch)

        channel = SubscriptionChannel(connect=FakeProvider(ws).connect)
        handle = await channel.open(_config(), blocking, lambda e: None)
        ws.push_logs(make_raw_log(signature, block_number=1))
        ws.push_logs(make_raw_log(signature, block_number=2))
        await asyncio.wait_for(entered.wait(), timeout=2.0)

        await channel.close(handle)
        release.set()
        await wait_until(lambda: handle._task.done())

        assert len(finished) == 1
        assert finished[0][0]["blockNumber"] == "0x1"

    async def test_close_during_resubscribe_does_not_reuse_old_id(self, recorder, sleep):
        class SilentWebSocket(FakeWebSocket):
            async def send(self, message):
                self.sent.append(json.loads(message))

        first, second = FakeWebSocket("0xsub1"), SilentWebSocket()
        channel = SubscriptionChannel(connect=FakeProvider(first, second).connect, sleep=sleep)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.subscription_id == "0xsub1")

        first.drop()
        await wait_until(lambda: second.methods == ["eth_subscribe"])
        assert handle.subscription_id is None

        await channel.close(handle)

        assert second.methods == ["eth_subscribe"]
        assert first.methods == ["eth_subscribe"]

    async def test_close_before_connect(self, recorder):
        gate = asyncio.Event()
        ws = FakeWebSocket()

        async def slow_connect(endpoint):
            await gate.wait()
            return ws

        channel = SubscriptionChannel(connect=slow_connect)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await channel.close(handle)

        assert handle._task.done()
        assert recorder.errors == []
        assert ws.sent == []


class TestReconnect:
    async def test_reconnects_after_drop(self, recorder, sleep, signature):
        first, second = FakeWebSocket("0xsub1"), FakeWebSocket("0xsub2")
        provider = FakeProvider(first, second)
        channel = SubscriptionChannel(connect=provider.connect, sleep=sleep)
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.subscription_id == "0xsub1")

        first.drop()
        await wait_until(lambda: handle.subscription_id == "0xsub2")
        second.push_logs(make_raw_log(signature))
        await wait_until(lambda: len(recorder.batches) == 1)

        assert len(provider.endpoints) == 2
        assert sleep.delays == [1.0]
        assert len(recorder.errors) == 1
        assert recorder.errors[0].attempt == 1
        assert handle.reconnect_attempts == 0
        assert handle.health is ChannelHealth.HEALTHY
        assert first.closed
        await channel.close(handle)

    async def test_gives_up_after_max_attempts(self, recorder, sleep):
        provider = FakeProvider(OSError("connection refused"))
        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=60.0),
            connect=provider.connect,
            sleep=sleep,
        )
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert sleep.delays == [1.0, 2.0, 4.0]
        assert [e.attempt for e in recorder.errors] == [1, 2, 3, 4]
        assert all("connection refused" in str(e) for e in recorder.errors)
        assert len(provider.endpoints) == 4
        assert handle.is_open
        assert not handle.is_active
        assert handle.last_error is not None
        await channel.close(handle)

    async def test_backoff_is_capped(self, recorder, sleep):
        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=5, base_delay_seconds=10.0, max_delay_seconds=25.0),
            connect=FakeProvider(OSError("down")).connect,
            sleep=sleep,
        )
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert sleep.delays == [10.0, 20.0, 25.0, 25.0, 25.0]
        await channel.close(handle)

    async def test_zero_attempts_never_reconnects(self, recorder, sleep):
        provider = FakeProvider(OSError("down"))
        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=0), connect=provider.connect, sleep=sleep,
        )
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert sleep.delays == []
        assert len(recorder.errors) == 1
        assert len(provider.endpoints) == 1
        await channel.close(handle)

    async def test_rejected_subscription_is_transport_error(self, recorder, sleep):
        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=0),
            connect=FakeProvider(FakeWebSocket(reject=True)).connect,
            sleep=sleep,
        )
        handle = await channel.open(_config(), recorder.on_logs, recorder.on_error)
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert "eth_subscribe rejected" in str(recorder.errors[0])
        await channel.close(handle)

    async def test_missing_confirmation_times_out(self, recorder, sleep):
        class SilentWebSocket(FakeWebSocket):
            async def send(self, message):
                self.sent.append(json.loads(message))

        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=0),
            connect=FakeProvider(SilentWebSocket()).connect,
            sleep=sleep,
        )
        handle = await channel.open(
            _config(subscribe_timeout_seconds=0.05), recorder.on_logs, recorder.on_error,
        )
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert "confirmation" in str(recorder.errors[0])
        await channel.close(handle)

    async def test_error_callback_failure_is_contained(self, sleep):
        def bad_on_error(error):
            raise RuntimeError("callback broken")

        async def on_logs(batch):
            pass

        channel = SubscriptionChannel(
            reconnect=ReconnectConfig(max_attempts=1),
            connect=FakeProvider(OSError("down")).connect,
            sleep=sleep,
        )
        handle = await channel.open(_config(), on_logs, bad_on_error)
        await wait_until(lambda: handle.health is ChannelHealth.FAILED)

        assert sleep.delays == [1.0]
        await channel.close(handle)
