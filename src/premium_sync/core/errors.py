"""Custom exception hierarchy for the premium sync listener."""


class PremiumSyncError(Exception):
    """Base exception for all premium sync errors."""


# --- Configuration ---
class ConfigError(PremiumSyncError):
    """Invalid or missing configuration."""


# --- Decoding ---
class DecodeError(PremiumSyncError):
    """A streamed log could not be decoded into a domain event."""


class InvalidAddress(PremiumSyncError, ValueError):
    """Value is not a well-formed 20-byte hex account address."""

    def __init__(self, raw: object, reason: str = "not a 0x-prefixed 40 digit hex string"):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid address {raw!r}: {reason}")


# --- Storage ---
class RepositoryError(PremiumSyncError):
    """Account store read or write failure."""


# --- Transport ---
class TransportError(PremiumSyncError):
    """Streaming connection failure (connect, subscribe, or receive)."""

    def __init__(self, message: str, attempt: int = 0):
        self.attempt = attempt
        super().__init__(message)
