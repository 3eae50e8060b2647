"""SQLAlchemy ORM models for the account store.

Only the columns the listener reads or writes are mapped; the owning API
may keep more on the same table.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from premium_sync.core.enums import AccountStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


class AccountRow(Base):
    """One account, keyed by its lower-case wallet address."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AccountStatus.STANDARD.value,
    )
    premium_upgraded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_accounts_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<AccountRow(wallet_address={self.wallet_address!r}, status={self.status!r})>"
