"""In-memory account repository for tests and dry runs.

No external dependencies. Mirrors the conditional-update semantics of the
PostgreSQL repository so both behave the same under redelivery.
"""

from __future__ import annotations

import logging
from datetime import datetime

from premium_sync.core.address import ChainAddress, normalize
from premium_sync.core.enums import AccountStatus
from premium_sync.core.models import AccountRecord

logger = logging.getLogger(__name__)


class InMemoryAccountRepository:
    """Dict-backed account store keyed by normalized address."""

    def __init__(self, accounts: list[AccountRecord] | None = None) -> None:
        self._accounts: dict[ChainAddress, AccountRecord] = {}
        self.lookups = 0
        self.writes = 0
        for account in accounts or []:
            self.add(account)

    def add(self, account: AccountRecord) -> None:
        address = normalize(account.address)
        self._accounts[address] = account.model_copy(update={"address": address})

    def add_address(
        self, address: str, status: AccountStatus = AccountStatus.STANDARD
    ) -> AccountRecord:
        record = AccountRecord(address=normalize(address), status=status)
        self.add(record)
        return record

    def get(self, address: str) -> AccountRecord | None:
        """Synchronous accessor. For testing."""
        return self._accounts.get(normalize(address))

    async def find_by_address(self, address: ChainAddress) -> AccountRecord | None:
        self.lookups += 1
        record = self._accounts.get(address)
        return record.model_copy() if record is not None else None

    async def upgrade_to_premium(self, address: ChainAddress, upgraded_at: datetime) -> bool:
        self.writes += 1
        record = self._accounts.get(address)
        if record is None or record.is_premium:
            return False
        self._accounts[address] = record.model_copy(
            update={"status": AccountStatus.PREMIUM, "premium_upgraded_at": upgraded_at}
        )
        return True

    def __len__(self) -> int:
        return len(self._accounts)
