"""Keeps account premium status in sync with an on-chain registration event."""

__version__ = "0.1.0"
