"""Chain-facing side: event signatures, log decoding and the log stream."""

from premium_sync.chain.decoder import DecodeResult, LogDecoder
from premium_sync.chain.signature import EventSignature, parse_event_signature
from premium_sync.chain.subscription import (
    ChannelConfig,
    SubscriptionChannel,
    SubscriptionHandle,
)

__all__ = [
    "ChannelConfig",
    "DecodeResult",
    "EventSignature",
    "LogDecoder",
    "SubscriptionChannel",
    "SubscriptionHandle",
    "parse_event_signature",
]
