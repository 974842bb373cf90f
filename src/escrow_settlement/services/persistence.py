"""Read-modify-write helper for the optimistic-concurrency store.

Every mutation of a transaction goes through ``apply_change``: load a fresh
copy, let ``mutate`` re-check its guards and change the copy, then save with
the version that was read. A lost race (StaleTransactionError) starts over
from a fresh read, so guards are always evaluated against current state.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from escrow_settlement.config import get_settings
from escrow_settlement.domain.exceptions import StaleTransactionError, TransactionNotFoundError
from escrow_settlement.domain.models import EscrowEvent, EscrowTransaction
from escrow_settlement.domain.store_protocol import EscrowStore
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)

# Returns the events to write with the change, or None to leave the row untouched.
Mutation = Callable[[EscrowTransaction], Awaitable[Sequence[EscrowEvent] | None]]


async def load_or_raise(store: EscrowStore, transaction_id: uuid.UUID) -> EscrowTransaction:
    transaction = await store.get(transaction_id)
    if transaction is None:
        raise TransactionNotFoundError(str(transaction_id))
    return transaction


async def apply_change(
    store: EscrowStore,
    transaction_id: uuid.UUID,
    mutate: Mutation,
    max_attempts: int | None = None,
) -> EscrowTransaction:
    """Apply ``mutate`` to the latest version of a transaction and persist it.

    Returns the stored transaction (unchanged if ``mutate`` returned None).
    Exceptions raised by ``mutate`` propagate without a retry.
    """
    attempts = max_attempts or get_settings().stale_write_max_attempts

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(StaleTransactionError),
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(multiplier=0.01, max=0.2),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.debug(
                    "store.stale_write_retry",
                    transaction_id=str(transaction_id),
                    attempt=attempt.retry_state.attempt_number,
                )
            transaction = await load_or_raise(store, transaction_id)
            events = await mutate(transaction)
            if events is None:
                return transaction
            return await store.save(transaction, list(events))

    raise AssertionError("unreachable")  # pragma: no cover
