"""Protocol interfaces for the premium sync listener.

Module boundaries are defined here as Protocol classes so the in-memory
and PostgreSQL repositories are interchangeable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from .address import ChainAddress
from .errors import TransportError
from .models import AccountRecord

# Callback signatures used by the subscription channel.
LogBatchHandler = Callable[[list[dict[str, Any]]], Coroutine[Any, Any, None]]
TransportErrorHandler = Callable[[TransportError], None]


@runtime_checkable
class IAccountRepository(Protocol):
    """Account store operations needed by the reconciliation engine.

    Both methods must be safe to call repeatedly with the same address.
    Implementations raise :class:`~premium_sync.core.errors.RepositoryError`
    on storage failure.
    """

    async def find_by_address(self, address: ChainAddress) -> AccountRecord | None: ...

    async def upgrade_to_premium(
        self, address: ChainAddress, upgraded_at: datetime
    ) -> bool:
        """Move the account to PREMIUM unless it already is.

        Returns ``True`` only when this call performed the transition.
        """
        ...
