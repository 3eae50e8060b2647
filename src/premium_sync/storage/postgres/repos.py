"""PostgreSQL implementation of the account repository.

The premium upgrade is a single conditional UPDATE, so the STANDARD ->
PREMIUM transition stays monotonic even with another writer (for example
an admin override) touching the same row.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from premium_sync.core.address import ChainAddress
from premium_sync.core.enums import AccountStatus
from premium_sync.core.errors import RepositoryError
from premium_sync.core.models import AccountRecord

from .connection import Database
from .models import AccountRow

logger = logging.getLogger(__name__)


def _row_to_record(row: AccountRow) -> AccountRecord:
    return AccountRecord(
        address=ChainAddress(row.wallet_address),
        status=AccountStatus(row.status),
        premium_upgraded_at=row.premium_upgraded_at,
    )


class PostgresAccountRepository:
    """Account lookups and upgrades against the ``accounts`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def find_by_address(self, address: ChainAddress) -> AccountRecord | None:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(AccountRow).where(AccountRow.wallet_address == address)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Lookup of {address} failed: {exc}") from exc
        return _row_to_record(row) if row is not None else None

    async def upgrade_to_premium(self, address: ChainAddress, upgraded_at: datetime) -> bool:
        stmt = (
            update(AccountRow)
            .where(
                AccountRow.wallet_address == address,
                AccountRow.status != AccountStatus.PREMIUM.value,
            )
            .values(
                status=AccountStatus.PREMIUM.value,
                premium_upgraded_at=upgraded_at,
                updated_at=upgraded_at,
            )
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Upgrade of {address} failed: {exc}") from exc
        return (result.rowcount or 0) > 0
