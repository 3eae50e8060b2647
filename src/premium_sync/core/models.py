"""Core domain models.

All models are Pydantic. ``DomainEvent`` and ``LogPosition`` are frozen:
they are built once by the decoder and only read afterwards.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .address import ChainAddress
from .enums import AccountStatus


class LogPosition(BaseModel):
    """Logical position of a log entry on chain.

    Providers do not always populate every field, so all are optional.
    Ordering is by ``(block_number, log_index)`` with missing values first.
    """

    model_config = ConfigDict(frozen=True)

    block_number: int | None = None
    log_index: int | None = None
    transaction_hash: str | None = None

    def _key(self) -> tuple[int, int]:
        return (
            -1 if self.block_number is None else self.block_number,
            -1 if self.log_index is None else self.log_index,
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LogPosition):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return f"block={self.block_number} log={self.log_index} tx={self.transaction_hash}"


class DomainEvent(BaseModel):
    """Decoded premium-upgrade signal for one account."""

    model_config = ConfigDict(frozen=True)

    subject_address: ChainAddress
    counterparty_address: ChainAddress | None = None
    observed_at: LogPosition = Field(default_factory=LogPosition)


class AccountRecord(BaseModel):
    """Snapshot of an account as stored by the account repository."""

    address: ChainAddress
    status: AccountStatus = AccountStatus.STANDARD
    premium_upgraded_at: datetime | None = None

    @property
    def is_premium(self) -> bool:
        return self.status == AccountStatus.PREMIUM
