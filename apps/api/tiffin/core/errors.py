from __future__ import annotations

from fastapi import HTTPException, status


class EngineError(HTTPException):
    """Base class for billing engine failures surfaced to callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind = "engine_error"

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code, detail=detail)


class ValidationError(EngineError):
    """Caller-correctable input; nothing was mutated."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    kind = "validation_error"


class ImmutableBillingError(ValidationError):
    kind = "immutable_billing"


class InvalidTransitionError(ValidationError):
    kind = "invalid_transition"


class OverAllocationError(ValidationError):
    kind = "over_allocation"


class InsufficientCreditError(ValidationError):
    kind = "insufficient_credit"


class NotFoundError(EngineError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class ConflictError(EngineError):
    """Concurrent modification that survived every retry."""

    status_code = status.HTTP_409_CONFLICT
    kind = "conflict"


class IntegrityError(EngineError):
    """Ledger data is inconsistent. Never corrected automatically."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind = "integrity_error"


class BillingIntegrityError(IntegrityError):
    kind = "billing_integrity"


class CreditBalanceIntegrityError(IntegrityError):
    kind = "credit_balance_integrity"


class CreditAlreadyConsumedError(IntegrityError):
    kind = "credit_already_consumed"
