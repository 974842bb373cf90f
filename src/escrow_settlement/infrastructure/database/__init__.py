"""Database infrastructure — engine, ORM models, and repositories."""

from escrow_settlement.infrastructure.database.engine import (
    close_db,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    get_session_factory,
    init_db,
)
from escrow_settlement.infrastructure.database.orm_models import (
    Base,
    EscrowEventRecord,
    EscrowTransactionRecord,
    PlatformConfigRecord,
)
from escrow_settlement.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    PlatformConfigRepository,
    SqlEscrowStore,
)

__all__ = [
    "Base",
    "EscrowEventRecord",
    "EscrowTransactionRecord",
    "PlatformConfigRecord",
    "EscrowRepository",
    "EventRepository",
    "PlatformConfigRepository",
    "SqlEscrowStore",
    "create_engine_for_url",
    "create_session_factory",
    "create_tables",
    "get_session_factory",
    "init_db",
    "close_db",
]
