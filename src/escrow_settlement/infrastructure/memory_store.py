"""In-process EscrowStore used by the simulation, tests and ``store_backend=memory``.

Rows are held in serialized (dict) form so callers always get detached
copies, the same as from the SQL store. A single asyncio.Lock makes each
operation atomic with respect to other coroutines on the loop.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from typing import Any

from escrow_settlement.domain.enums import EscrowStatus, PartyRole
from escrow_settlement.domain.exceptions import StaleTransactionError, TransactionNotFoundError
from escrow_settlement.domain.models import EscrowEvent, EscrowTransaction, PlatformConfig


class InMemoryEscrowStore:
    """EscrowStore kept in process memory."""

    def __init__(self) -> None:
        self._rows: dict[uuid.UUID, dict[str, Any]] = {}
        self._events: dict[uuid.UUID, list[EscrowEvent]] = {}
        self._platform_config: PlatformConfig | None = None
        self._lock = asyncio.Lock()

    async def create(
        self,
        transaction: EscrowTransaction,
        events: Sequence[EscrowEvent] = (),
    ) -> EscrowTransaction:
        async with self._lock:
            if transaction.id in self._rows:
                raise ValueError(f"Transaction {transaction.id} already exists")
            row = transaction.to_dict()
            row["version"] = 1
            self._rows[transaction.id] = row
            self._events[transaction.id] = list(events)
            return EscrowTransaction.from_dict(row)

    async def get(self, transaction_id: uuid.UUID) -> EscrowTransaction | None:
        row = self._rows.get(transaction_id)
        return EscrowTransaction.from_dict(row) if row is not None else None

    async def save(
        self,
        transaction: EscrowTransaction,
        events: Sequence[EscrowEvent] = (),
    ) -> EscrowTransaction:
        async with self._lock:
            current = self._rows.get(transaction.id)
            if current is None:
                raise TransactionNotFoundError(str(transaction.id))
            if current["version"] != transaction.version:
                raise StaleTransactionError(str(transaction.id), transaction.version)

            row = transaction.to_dict()
            row["version"] = transaction.version + 1
            row["created_at"] = current["created_at"]
            self._rows[transaction.id] = row
            self._events[transaction.id].extend(events)
            return EscrowTransaction.from_dict(row)

    async def list_by_status(
        self,
        statuses: Sequence[EscrowStatus],
        limit: int = 100,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        wanted = {EscrowStatus(s).value for s in statuses}
        rows = sorted(
            (row for row in self._rows.values() if row["status"] in wanted),
            key=lambda row: (row["created_at"], row["id"]),
        )
        return [EscrowTransaction.from_dict(row) for row in rows[offset : offset + limit]]

    async def list_by_party(
        self,
        user_id: str,
        role: PartyRole | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        def matches(row: dict[str, Any]) -> bool:
            if role == PartyRole.BUYER:
                return row["buyer_id"] == user_id
            if role == PartyRole.SELLER:
                return row["seller_id"] == user_id
            return user_id in (row["buyer_id"], row["seller_id"])

        rows = sorted(
            (row for row in self._rows.values() if matches(row)),
            key=lambda row: (row["created_at"], row["id"]),
            reverse=True,
        )
        return [EscrowTransaction.from_dict(row) for row in rows[offset : offset + limit]]

    async def list_events(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        return list(self._events.get(transaction_id, []))

    async def get_platform_config(self) -> PlatformConfig | None:
        return self._platform_config

    async def save_platform_config(self, config: PlatformConfig) -> PlatformConfig:
        self._platform_config = config
        return config

    async def ping(self) -> bool:
        return True
