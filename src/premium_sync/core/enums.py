"""Enumerations used across the premium sync listener."""

from enum import Enum


class AccountStatus(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED_ALREADY_PREMIUM = "skipped_already_premium"
    SKIPPED_UNKNOWN_ACCOUNT = "skipped_unknown_account"
    FAILED = "failed"


class ListenerState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ChannelHealth(str, Enum):
    """Health of a single streaming subscription."""

    CONNECTING = "connecting"
    HEALTHY = "healthy"
    RECONNECTING = "reconnecting"
    FAILED = "failed"      # Reconnect attempts exhausted
    CLOSED = "closed"
