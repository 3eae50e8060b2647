"""Shared fixtures for the premium-sync test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from premium_sync.chain.decoder import LogDecoder
from premium_sync.chain.signature import EventSignature, parse_event_signature
from premium_sync.core.clock import FrozenClock
from premium_sync.core.config import DEFAULT_EVENT_SIGNATURE
from premium_sync.storage.memory import InMemoryAccountRepository


@pytest.fixture
def signature() -> EventSignature:
    return parse_event_signature(DEFAULT_EVENT_SIGNATURE)


@pytest.fixture
def decoder(signature) -> LogDecoder:
    return LogDecoder(signature)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()
