"""Reconciliation layer: applies decoded chain events to account records."""

from premium_sync.reconciliation.engine import ApplyResult, ReconciliationEngine

__all__ = ["ApplyResult", "ReconciliationEngine"]
