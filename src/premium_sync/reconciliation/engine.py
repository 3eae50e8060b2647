"""Apply decoded premium-upgrade events to the account store.

The engine never creates accounts and never downgrades them. Every event is
checked against the repository before writing, so redelivery after a
provider reconnect is harmless without separate dedupe bookkeeping. The
repository write itself is conditional, which also covers the window where
another writer upgrades the account between lookup and write.

Usage::

    engine = ReconciliationEngine(repository)
    result = await engine.apply(event)
    if result.outcome is ApplyOutcome.FAILED:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from premium_sync.core.address import ChainAddress, normalize
from premium_sync.core.clock import IClock, WallClock
from premium_sync.core.enums import ApplyOutcome
from premium_sync.core.errors import InvalidAddress, RepositoryError
from premium_sync.core.interfaces import IAccountRepository
from premium_sync.core.models import DomainEvent
from premium_sync.observability.metrics import record_outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying one :class:`DomainEvent`."""

    outcome: ApplyOutcome
    address: ChainAddress | None = None
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome is ApplyOutcome.APPLIED


class ReconciliationEngine:
    """Idempotent STANDARD -> PREMIUM transition driven by chain events.

    Parameters
    ----------
    repository:
        Account store; the authoritative source for the "already premium"
        check.
    clock:
        Source of ``premium_upgraded_at`` timestamps.
    """

    def __init__(self, repository: IAccountRepository, clock: IClock | None = None) -> None:
        self._repository = repository
        self._clock = clock or WallClock()

    async def apply(self, event: DomainEvent) -> ApplyResult:
        """Apply *event*. Never raises; failures come back as ``FAILED``."""
        result = await self._apply(event)
        record_outcome(result.outcome.value)
        return result

    async def apply_batch(self, events: Iterable[DomainEvent]) -> list[ApplyResult]:
        """Apply *events* one at a time, in order."""
        return [await self.apply(event) for event in events]

    async def _apply(self, event: DomainEvent) -> ApplyResult:
        try:
            address = normalize(event.subject_address)
        except InvalidAddress as exc:
            logger.warning("Dropping event with malformed subject at %s: %s", event.observed_at, exc)
            return ApplyResult(ApplyOutcome.FAILED, reason=str(exc))

        try:
            account = await self._repository.find_by_address(address)
            if account is None:
                logger.debug("No account for %s; skipping (%s)", address, event.observed_at)
                return ApplyResult(ApplyOutcome.SKIPPED_UNKNOWN_ACCOUNT, address)

            if account.is_premium:
                logger.debug("Account %s already premium; skipping", address)
                return ApplyResult(ApplyOutcome.SKIPPED_ALREADY_PREMIUM, address)

            changed = await self._repository.upgrade_to_premium(address, self._clock.now())
        except RepositoryError as exc:
            logger.error("Failed to upgrade %s to premium: %s", address, exc, exc_info=True)
            return ApplyResult(ApplyOutcome.FAILED, address, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error upgrading %s to premium", address)
            return ApplyResult(ApplyOutcome.FAILED, address, f"{type(exc).__name__}: {exc}")

        if not changed:
            # Another writer got there between our lookup and the write.
            logger.info("Account %s was upgraded concurrently; skipping", address)
            return ApplyResult(ApplyOutcome.SKIPPED_ALREADY_PREMIUM, address)

        logger.info(
            "Upgraded %s to premium via on-chain event (%s)", address, event.observed_at,
        )
        return ApplyResult(ApplyOutcome.APPLIED, address)
