"""Domain exceptions for the escrow settlement engine.

These exceptions are framework-agnostic and represent business rule violations
or failed collaborator calls. They are caught and translated to HTTP responses
by the API layer's middleware.

Taxonomy:
    ValidationError       -> rejected synchronously, transaction unchanged
    PaymentRailError      -> external call failed, transition did not happen
    ConcurrencyError      -> lost a race on the same transaction, safe to retry
"""


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class TransactionNotFoundError(EscrowError):
    """Raised when a transaction ID does not exist."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Escrow transaction not found: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
        )
        self.transaction_id = transaction_id


# --- Validation Errors ---


class ValidationError(EscrowError):
    """Base class for requests rejected before anything was changed."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ValidationError):
    """Raised when an operation is not allowed from the current status.

    Example: pending_payment -> shipped (payment must be captured first)
    """

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: '{attempted_event}' is not allowed from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


class UnauthorizedActorError(ValidationError):
    """Raised when the caller is not the buyer/seller the operation requires."""

    def __init__(self, actor_id: str, role: str) -> None:
        super().__init__(
            message=f"Actor {actor_id} is not the {role} of this transaction",
            code="UNAUTHORIZED_ACTOR",
        )
        self.actor_id = actor_id
        self.role = role


class AmountOutOfBoundsError(ValidationError):
    """Raised when a transaction amount is outside the configured bounds."""

    def __init__(self, amount: int, minimum: int, maximum: int) -> None:
        super().__init__(
            message=f"Amount {amount} is outside the allowed range [{minimum}, {maximum}]",
            code="AMOUNT_OUT_OF_BOUNDS",
        )
        self.amount = amount


class InvalidRefundAmountError(ValidationError):
    """Raised when a refund amount is not positive or exceeds the original charge."""

    def __init__(self, amount: int, original: int) -> None:
        super().__init__(
            message=f"Refund amount {amount} must be between 1 and {original}",
            code="INVALID_REFUND_AMOUNT",
        )


class DisputePeriodExpiredError(ValidationError):
    """Raised when the buyer tries to dispute after the dispute deadline."""

    def __init__(self, transaction_id: str, deadline: str) -> None:
        super().__init__(
            message=f"Dispute period for {transaction_id} ended at {deadline}",
            code="DISPUTE_PERIOD_EXPIRED",
        )


class ConditionConfigError(ValidationError):
    """Raised when caller-supplied settlement conditions are malformed."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message=message, code="INVALID_CONDITIONS")
        self.errors = errors or []


class ConditionNotFoundError(ValidationError):
    """Raised when a condition update targets a type the transaction lacks."""

    def __init__(self, transaction_id: str, condition: str) -> None:
        super().__init__(
            message=f"Transaction {transaction_id} has no '{condition}' condition",
            code="CONDITION_NOT_FOUND",
        )


class ConditionsNotMetError(ValidationError):
    """Raised when a release is requested before the conditions allow it."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Settlement conditions are not met for {transaction_id}",
            code="CONDITIONS_NOT_MET",
        )


class TransactionAlreadySettledError(ValidationError):
    """Raised when fund movement is requested on a terminal transaction."""

    def __init__(self, transaction_id: str, status: str) -> None:
        super().__init__(
            message=f"Transaction {transaction_id} is already {status}",
            code="ALREADY_SETTLED",
        )
        self.status = status


class RefundNotAllowedError(ValidationError):
    """Raised when funds already left the platform balance for the seller."""

    def __init__(self, transaction_id: str, reason: str) -> None:
        super().__init__(
            message=f"Cannot refund {transaction_id}: {reason}",
            code="REFUND_NOT_ALLOWED",
        )


# --- Concurrency Errors ---


class ConcurrencyError(EscrowError):
    """Base class for lost races on a single transaction."""


class StaleTransactionError(ConcurrencyError):
    """Raised by the store when the expected version no longer matches."""

    def __init__(self, transaction_id: str, expected_version: int) -> None:
        super().__init__(
            message=f"Transaction {transaction_id} changed since version {expected_version}",
            code="STALE_TRANSACTION",
        )
        self.transaction_id = transaction_id
        self.expected_version = expected_version


class SettlementInProgressError(ConcurrencyError):
    """Raised when another worker holds the release/refund claim."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"A settlement is already in progress for {transaction_id}",
            code="SETTLEMENT_IN_PROGRESS",
        )


# --- Payment Errors ---


class PaymentRailError(EscrowError):
    """Raised when a payment rail operation fails."""

    def __init__(
        self,
        message: str,
        operation: str = "",
        idempotency_key: str | None = None,
        code: str = "PAYMENT_RAIL_ERROR",
    ) -> None:
        super().__init__(message=message, code=code)
        self.operation = operation
        self.idempotency_key = idempotency_key


class TransferFailedError(PaymentRailError):
    """Raised when moving the seller amount to the destination account fails."""

    def __init__(self, transaction_id: str, reason: str) -> None:
        super().__init__(
            message=f"Transfer for {transaction_id} failed: {reason}",
            operation="transfer",
            code="TRANSFER_FAILED",
        )


class PayoutFailedError(PaymentRailError):
    """Raised when the transfer succeeded but the payout did not.

    The transfer id is already persisted; retrying the release only
    re-issues the payout.
    """

    def __init__(self, transaction_id: str, transfer_id: str, reason: str) -> None:
        super().__init__(
            message=f"Payout for {transaction_id} failed after transfer {transfer_id}: {reason}",
            operation="payout",
            code="PAYOUT_FAILED",
        )
        self.transfer_id = transfer_id
        self.retryable = True


class RefundFailedError(PaymentRailError):
    """Raised when the rail rejects a refund."""

    def __init__(self, transaction_id: str, reason: str) -> None:
        super().__init__(
            message=f"Refund for {transaction_id} failed: {reason}",
            operation="refund",
            code="REFUND_FAILED",
        )


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
