"""Escrow Store Protocol.

The storage capability the engine is written against. Implementations live
in the infrastructure layer (SQLAlchemy and in-memory); the domain and
service layers never import a database driver.

Every write is a compare-and-set on ``EscrowTransaction.version`` and
carries the audit events produced by the same change, so a status change
and its event land together or not at all.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from escrow_settlement.domain.enums import EscrowStatus, PartyRole
from escrow_settlement.domain.models import EscrowEvent, EscrowTransaction, PlatformConfig


@runtime_checkable
class EscrowStore(Protocol):
    """Persistence for escrow transactions, their audit trail and platform config.

    Concrete implementations:
        - infrastructure/database/repositories.py  (SqlEscrowStore)
        - infrastructure/memory_store.py           (InMemoryEscrowStore)
    """

    async def create(self, transaction: EscrowTransaction, events: Sequence[EscrowEvent] = ()) -> EscrowTransaction:
        """Insert a new transaction at version 1."""
        ...

    async def get(self, transaction_id: uuid.UUID) -> EscrowTransaction | None:
        """Return a detached copy of the stored transaction, or None."""
        ...

    async def save(self, transaction: EscrowTransaction, events: Sequence[EscrowEvent] = ()) -> EscrowTransaction:
        """Write ``transaction`` if the stored version still equals ``transaction.version``.

        Returns the saved copy with the version incremented.

        Raises:
            StaleTransactionError: If another writer got there first.
            TransactionNotFoundError: If the transaction does not exist.
        """
        ...

    async def list_by_status(
        self,
        statuses: Sequence[EscrowStatus],
        limit: int = 100,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        """Transactions in any of ``statuses``, oldest first."""
        ...

    async def list_by_party(
        self,
        user_id: str,
        role: PartyRole | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        """Transactions where ``user_id`` is the buyer and/or seller, newest first."""
        ...

    async def list_events(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        """Audit events for one transaction, oldest first."""
        ...

    async def get_platform_config(self) -> PlatformConfig | None:
        ...

    async def save_platform_config(self, config: PlatformConfig) -> PlatformConfig:
        ...

    async def ping(self) -> bool:
        ...


@runtime_checkable
class IdempotencyStore(Protocol):
    """Request idempotency keys for transaction creation.

    Concrete implementation: infrastructure/redis_client.py (RedisIdempotencyStore)
    """

    async def reserve(self, key: str) -> str | None:
        """Reserve ``key``. Returns None if it was free, else its current value."""
        ...

    async def complete(self, key: str, value: str) -> None: ...

    async def release(self, key: str) -> None: ...
