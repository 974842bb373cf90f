"""Repository classes for database access, and the SQL-backed EscrowStore.

Repositories encapsulate all SQL queries and accept an AsyncSession; they
never manage their own transactions. SqlEscrowStore is the caller that
does: one session and one database transaction per store operation, so a
transaction row and the audit events of the same change commit together.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, text, update

from escrow_settlement.domain.enums import Actor, EscrowStatus, EventType, PartyRole
from escrow_settlement.domain.exceptions import StaleTransactionError, TransactionNotFoundError
from escrow_settlement.domain.models import (
    EscrowEvent,
    EscrowTransaction,
    PlatformConfig,
    as_utc,
)
from escrow_settlement.infrastructure.database.orm_models import (
    EscrowEventRecord,
    EscrowTransactionRecord,
    PlatformConfigRecord,
)
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

# Columns written on every save. id, version and created_at are managed separately.
_MUTABLE_COLUMNS = (
    "buyer_id",
    "seller_id",
    "seller_destination_id",
    "item_description",
    "item_type",
    "amount",
    "platform_fee",
    "rail_fee",
    "seller_amount",
    "currency",
    "dispute_period_days",
    "status",
    "status_history",
    "conditions",
    "all_conditions_met",
    "metadata_json",
    "payment_intent_id",
    "charge_id",
    "transfer_id",
    "payout_id",
    "refund_id",
    "refunded_amount",
    "shipping",
    "dispute_reason",
    "disputed_at",
    "dispute_resolution",
    "dispute_period_ends_at",
    "settlement_claim",
    "settlement_claimed_at",
    "last_error",
    "updated_at",
)


def _column_values(transaction: EscrowTransaction) -> dict[str, Any]:
    """Map the aggregate onto column values (nested values as plain JSON)."""
    data = transaction.to_dict()
    return {
        "buyer_id": transaction.buyer_id,
        "seller_id": transaction.seller_id,
        "seller_destination_id": transaction.seller_destination_id,
        "item_description": transaction.item_description,
        "item_type": transaction.item_type.value,
        "amount": transaction.amount,
        "platform_fee": transaction.platform_fee,
        "rail_fee": transaction.rail_fee,
        "seller_amount": transaction.seller_amount,
        "currency": transaction.currency,
        "dispute_period_days": transaction.dispute_period_days,
        "status": transaction.status.value,
        "status_history": data["status_history"],
        "conditions": data["conditions"],
        "all_conditions_met": transaction.all_conditions_met,
        "metadata_json": data["metadata"],
        "payment_intent_id": transaction.payment_intent_id,
        "charge_id": transaction.charge_id,
        "transfer_id": transaction.transfer_id,
        "payout_id": transaction.payout_id,
        "refund_id": transaction.refund_id,
        "refunded_amount": transaction.refunded_amount,
        "shipping": data["shipping"],
        "dispute_reason": transaction.dispute_reason,
        "disputed_at": transaction.disputed_at,
        "dispute_resolution": transaction.dispute_resolution,
        "dispute_period_ends_at": transaction.dispute_period_ends_at,
        "settlement_claim": transaction.settlement_claim,
        "settlement_claimed_at": transaction.settlement_claimed_at,
        "last_error": transaction.last_error,
        "updated_at": transaction.updated_at,
    }


def _to_domain(record: EscrowTransactionRecord) -> EscrowTransaction:
    return EscrowTransaction.from_dict(
        {
            "id": record.id,
            "buyer_id": record.buyer_id,
            "seller_id": record.seller_id,
            "seller_destination_id": record.seller_destination_id,
            "item_description": record.item_description,
            "item_type": record.item_type,
            "amount": record.amount,
            "platform_fee": record.platform_fee,
            "rail_fee": record.rail_fee,
            "seller_amount": record.seller_amount,
            "currency": record.currency,
            "dispute_period_days": record.dispute_period_days,
            "status": record.status,
            "status_history": record.status_history,
            "conditions": record.conditions,
            "all_conditions_met": record.all_conditions_met,
            "metadata": record.metadata_json,
            "payment_intent_id": record.payment_intent_id,
            "charge_id": record.charge_id,
            "transfer_id": record.transfer_id,
            "payout_id": record.payout_id,
            "refund_id": record.refund_id,
            "refunded_amount": record.refunded_amount,
            "shipping": record.shipping,
            "dispute_reason": record.dispute_reason,
            "disputed_at": record.disputed_at,
            "dispute_resolution": record.dispute_resolution,
            "dispute_period_ends_at": record.dispute_period_ends_at,
            "settlement_claim": record.settlement_claim,
            "settlement_claimed_at": record.settlement_claimed_at,
            "last_error": record.last_error,
            "version": record.version,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }
    )


def _event_to_domain(record: EscrowEventRecord) -> EscrowEvent:
    return EscrowEvent(
        id=record.id,
        transaction_id=record.transaction_id,
        event_type=EventType(record.event_type),
        description=record.description,
        triggered_by=Actor(record.triggered_by),
        data=dict(record.data or {}),
        created_at=as_utc(record.created_at),
    )


class EscrowRepository:
    """Data access for escrow transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: EscrowTransaction) -> EscrowTransactionRecord:
        """Insert a new transaction row at version 1."""
        record = EscrowTransactionRecord(
            id=transaction.id,
            version=1,
            created_at=transaction.created_at,
            **_column_values(transaction),
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_id(self, transaction_id: uuid.UUID) -> EscrowTransactionRecord | None:
        result = await self._session.execute(
            select(EscrowTransactionRecord).where(EscrowTransactionRecord.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def compare_and_set(self, transaction: EscrowTransaction) -> bool:
        """UPDATE the row only if its version still equals ``transaction.version``."""
        values = {
            getattr(EscrowTransactionRecord, name): value
            for name, value in _column_values(transaction).items()
            if name in _MUTABLE_COLUMNS
        }
        values[EscrowTransactionRecord.version] = transaction.version + 1

        result = await self._session.execute(
            update(EscrowTransactionRecord)
            .where(
                EscrowTransactionRecord.id == transaction.id,
                EscrowTransactionRecord.version == transaction.version,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def exists(self, transaction_id: uuid.UUID) -> bool:
        result = await self._session.execute(
            select(EscrowTransactionRecord.id).where(EscrowTransactionRecord.id == transaction_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_statuses(
        self,
        statuses: Sequence[EscrowStatus],
        limit: int,
        offset: int,
    ) -> list[EscrowTransactionRecord]:
        """Fetch transactions in any of ``statuses``, oldest first."""
        result = await self._session.execute(
            select(EscrowTransactionRecord)
            .where(EscrowTransactionRecord.status.in_([s.value for s in statuses]))
            .order_by(EscrowTransactionRecord.created_at.asc(), EscrowTransactionRecord.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_by_party(
        self,
        user_id: str,
        role: PartyRole | None,
        limit: int,
        offset: int,
    ) -> list[EscrowTransactionRecord]:
        """Fetch transactions for a buyer and/or seller, newest first."""
        if role == PartyRole.BUYER:
            criterion = EscrowTransactionRecord.buyer_id == user_id
        elif role == PartyRole.SELLER:
            criterion = EscrowTransactionRecord.seller_id == user_id
        else:
            criterion = or_(
                EscrowTransactionRecord.buyer_id == user_id,
                EscrowTransactionRecord.seller_id == user_id,
            )
        result = await self._session.execute(
            select(EscrowTransactionRecord)
            .where(criterion)
            .order_by(EscrowTransactionRecord.created_at.desc(), EscrowTransactionRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_many(self, events: Sequence[EscrowEvent]) -> None:
        """Append audit events. This is the ONLY write operation allowed."""
        if not events:
            return

        result = await self._session.execute(
            select(func.count())
            .select_from(EscrowEventRecord)
            .where(EscrowEventRecord.transaction_id == events[0].transaction_id)
        )
        next_sequence = int(result.scalar_one())

        for offset, evt in enumerate(events):
            self._session.add(
                EscrowEventRecord(
                    id=evt.id,
                    transaction_id=evt.transaction_id,
                    event_type=evt.event_type.value,
                    description=evt.description,
                    triggered_by=evt.triggered_by.value,
                    data=dict(evt.data),
                    created_at=evt.created_at,
                    sequence=next_sequence + offset,
                )
            )
        await self._session.flush()

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowEventRecord]:
        """Fetch the audit trail for a transaction in insertion order."""
        result = await self._session.execute(
            select(EscrowEventRecord)
            .where(EscrowEventRecord.transaction_id == transaction_id)
            .order_by(EscrowEventRecord.sequence.asc())
        )
        return list(result.scalars().all())


class PlatformConfigRepository:
    """Data access for the single platform configuration row."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self) -> PlatformConfigRecord | None:
        return await self._session.get(PlatformConfigRecord, 1)

    async def upsert(self, config: PlatformConfig) -> PlatformConfigRecord:
        record = await self.get()
        if record is None:
            record = PlatformConfigRecord(id=1, **config.to_dict())
            self._session.add(record)
        else:
            for name, value in config.to_dict().items():
                setattr(record, name, value)
        await self._session.flush()
        return record


class SqlEscrowStore:
    """EscrowStore backed by SQLAlchemy async sessions (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        transaction: EscrowTransaction,
        events: Sequence[EscrowEvent] = (),
    ) -> EscrowTransaction:
        async with self._session_factory() as session, session.begin():
            record = await EscrowRepository(session).create(transaction)
            await EventRepository(session).record_many(events)
            created = _to_domain(record)
        logger.debug("store.created", transaction_id=str(transaction.id))
        return created

    async def get(self, transaction_id: uuid.UUID) -> EscrowTransaction | None:
        async with self._session_factory() as session:
            record = await EscrowRepository(session).get_by_id(transaction_id)
            return _to_domain(record) if record is not None else None

    async def save(
        self,
        transaction: EscrowTransaction,
        events: Sequence[EscrowEvent] = (),
    ) -> EscrowTransaction:
        async with self._session_factory() as session, session.begin():
            repo = EscrowRepository(session)
            if not await repo.compare_and_set(transaction):
                if not await repo.exists(transaction.id):
                    raise TransactionNotFoundError(str(transaction.id))
                raise StaleTransactionError(str(transaction.id), transaction.version)
            await EventRepository(session).record_many(events)

        saved = transaction.copy()
        saved.version = transaction.version + 1
        return saved

    async def list_by_status(
        self,
        statuses: Sequence[EscrowStatus],
        limit: int = 100,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        async with self._session_factory() as session:
            records = await EscrowRepository(session).get_by_statuses(statuses, limit, offset)
            return [_to_domain(r) for r in records]

    async def list_by_party(
        self,
        user_id: str,
        role: PartyRole | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        async with self._session_factory() as session:
            records = await EscrowRepository(session).get_by_party(user_id, role, limit, offset)
            return [_to_domain(r) for r in records]

    async def list_events(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        async with self._session_factory() as session:
            records = await EventRepository(session).get_by_transaction(transaction_id)
            return [_event_to_domain(r) for r in records]

    async def get_platform_config(self) -> PlatformConfig | None:
        async with self._session_factory() as session:
            record = await PlatformConfigRepository(session).get()
            if record is None:
                return None
            return PlatformConfig(
                **{name: getattr(record, name) for name in PlatformConfig().to_dict()}
            )

    async def save_platform_config(self, config: PlatformConfig) -> PlatformConfig:
        async with self._session_factory() as session, session.begin():
            await PlatformConfigRepository(session).upsert(config)
        return config

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
