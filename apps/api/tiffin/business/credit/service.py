from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from tiffin import audit, events
from tiffin.business.credit.models import CreditUsage, CustomerCredit
from tiffin.business.credit.repository import CreditRepository
from tiffin.business.credit.schemas import CreditAuditRead, CreditSummaryRead, CreditUsageRead, CustomerCreditRead
from tiffin.core.errors import (
    CreditAlreadyConsumedError,
    CreditBalanceIntegrityError,
    InsufficientCreditError,
    NotFoundError,
)
from tiffin.core.money import ZERO, to_money
from tiffin.metrics import observe_credit_created


logger = logging.getLogger("tiffin.credit")

EXCESS_PAYMENT_NOTE = "Auto-created from excess payment"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(credit: CustomerCredit) -> dict[str, Any]:
    return {"status": credit.status, "current_balance": credit.current_balance}


@dataclass(slots=True)
class CreditService:
    """Customer credit balances.

    Credit is spent only through payment allocation and paid out only
    through an approved refund; nothing here is reachable as a standalone
    "apply credit" operation.
    """

    repository: CreditRepository = CreditRepository()

    def available_credit(self, session: Session, customer_id: uuid.UUID) -> CreditSummaryRead:
        credits = self.repository.list_available(session, customer_id)
        total = sum((Decimal(item.current_balance) for item in credits), start=ZERO)
        return CreditSummaryRead(
            customer_id=customer_id,
            total_available=to_money(total),
            credits=[CustomerCreditRead.model_validate(item) for item in credits],
        )

    def available_total(self, session: Session, customer_id: uuid.UUID, *, for_update: bool = False) -> Decimal:
        credits = self.repository.list_available(session, customer_id, for_update=for_update)
        return to_money(sum((Decimal(item.current_balance) for item in credits), start=ZERO))

    def list_credits(self, session: Session, customer_id: uuid.UUID, status: str | None = None) -> list[CustomerCreditRead]:
        return [CustomerCreditRead.model_validate(item) for item in self.repository.list_for_customer(session, customer_id, status)]

    def get_credit(self, session: Session, credit_id: uuid.UUID) -> CustomerCreditRead:
        return CustomerCreditRead.model_validate(self.get_model(session, credit_id))

    def list_usages(self, session: Session, credit_id: uuid.UUID) -> list[CreditUsageRead]:
        self.get_model(session, credit_id)
        return [CreditUsageRead.model_validate(item) for item in self.repository.list_usages(session, credit_id)]

    def get_model(self, session: Session, credit_id: uuid.UUID, *, for_update: bool = False) -> CustomerCredit:
        credit = self.repository.get(session, credit_id, for_update=for_update)
        if credit is None:
            raise NotFoundError("credit not found")
        return credit

    def audit_credit(self, session: Session, credit_id: uuid.UUID) -> CreditAuditRead:
        """Check ``current_balance == original - usage - completed refunds``."""
        credit = self.get_model(session, credit_id)
        used = self.repository.used_amount(session, credit_id)
        refunded = Decimal(credit.refunded_amount)
        expected = to_money(Decimal(credit.original_amount) - used - refunded)
        if Decimal(credit.current_balance) != expected:
            logger.error(
                "integrity_error",
                extra={
                    "operation": "credit.audit",
                    "error_kind": CreditBalanceIntegrityError.kind,
                    "credit_id": str(credit.id),
                },
            )
            raise CreditBalanceIntegrityError(
                f"credit balance {credit.current_balance} does not match ledger balance {expected}"
            )
        return CreditAuditRead(
            credit_id=credit.id,
            original_amount=credit.original_amount,
            used_amount=to_money(used),
            refunded_amount=to_money(refunded),
            current_balance=credit.current_balance,
            consistent=True,
        )

    # -- mutations; callers own the transaction --------------------------

    def consume(
        self,
        session: Session,
        customer_id: uuid.UUID,
        billing_id: uuid.UUID,
        payment_record_id: uuid.UUID | None,
        amount: Decimal,
        actor: str,
    ) -> list[CreditUsage]:
        """Draw ``amount`` from the customer's credits, oldest first."""
        credits = self.repository.list_available(session, customer_id, for_update=True)
        available = sum((Decimal(item.current_balance) for item in credits), start=ZERO)
        if amount > available:
            raise InsufficientCreditError(f"credit amount {amount} exceeds available credit {to_money(available)}")

        usages: list[CreditUsage] = []
        remaining = amount
        for credit in credits:
            if remaining <= ZERO:
                break
            draw = min(remaining, Decimal(credit.current_balance))
            usage = CreditUsage(
                credit_id=credit.id,
                billing_id=billing_id,
                payment_record_id=payment_record_id,
                amount_used=draw,
            )
            self._debit(credit, draw, exhausted_status="used")
            session.add(usage)
            usages.append(usage)
            audit.record(
                session,
                actor,
                "customer_credit",
                credit.id,
                "used",
                {"current_balance": Decimal(credit.current_balance) + draw},
                _snapshot(credit),
            )
            remaining -= draw
        session.flush()
        return usages

    def restore_usage(self, session: Session, usage: CreditUsage, actor: str, *, reason: str | None = None) -> CustomerCredit:
        credit = self.get_model(session, usage.credit_id, for_update=True)
        before = _snapshot(credit)
        restored = to_money(Decimal(credit.current_balance) + Decimal(usage.amount_used))
        ceiling = to_money(Decimal(credit.original_amount) - Decimal(credit.refunded_amount))
        if restored > ceiling:
            raise CreditBalanceIntegrityError(
                f"restoring {usage.amount_used} would raise credit {credit.id} above its refundable original amount"
            )
        credit.current_balance = restored
        if credit.status in ("used", "refunded") and restored > ZERO:
            credit.status = "available"
        usage.reversed_at = _now()
        session.flush()
        audit.record(session, actor, "customer_credit", credit.id, "usage_restored", before, _snapshot(credit), reason=reason)
        return credit

    def create_from_excess(
        self,
        session: Session,
        customer_id: uuid.UUID,
        payment_record_id: uuid.UUID,
        amount: Decimal,
        actor: str,
    ) -> CustomerCredit:
        credit = CustomerCredit(
            customer_id=customer_id,
            source_payment_id=payment_record_id,
            original_amount=amount,
            current_balance=amount,
            status="available",
            notes=EXCESS_PAYMENT_NOTE,
        )
        session.add(credit)
        session.flush()
        audit.record(session, actor, "customer_credit", credit.id, "created", None, _snapshot(credit))
        observe_credit_created()
        return credit

    def apply_refund(self, session: Session, credit: CustomerCredit, amount: Decimal, actor: str) -> CustomerCredit:
        if credit.status != "available":
            raise InsufficientCreditError(f"credit is {credit.status} and cannot be refunded")
        if amount > Decimal(credit.current_balance):
            raise InsufficientCreditError(
                f"refund amount {amount} exceeds credit balance {credit.current_balance}"
            )
        before = _snapshot(credit)
        self._debit(credit, amount, exhausted_status="refunded")
        credit.refunded_amount = to_money(Decimal(credit.refunded_amount) + amount)
        session.flush()
        audit.record(session, actor, "customer_credit", credit.id, "refunded", before, _snapshot(credit))
        return credit

    def invalidate_source_credits(
        self,
        session: Session,
        payment_record_id: uuid.UUID,
        actor: str,
        *,
        reason: str | None = None,
    ) -> list[CustomerCredit]:
        """Expire the credits a deleted payment created; refuse if any were spent or refunded."""
        credits = self.repository.list_by_source_payment(session, payment_record_id, for_update=True)
        for credit in credits:
            if credit.status == "expired":
                continue
            untouched = (
                credit.status == "available"
                and Decimal(credit.current_balance) == Decimal(credit.original_amount)
                and self.repository.used_amount(session, credit.id) == ZERO
                and Decimal(credit.refunded_amount) == ZERO
            )
            if not untouched:
                raise CreditAlreadyConsumedError(
                    f"credit {credit.id} from this payment has already been used or refunded"
                )
        for credit in credits:
            if credit.status == "expired":
                continue
            before = _snapshot(credit)
            credit.status = "expired"
            audit.record(session, actor, "customer_credit", credit.id, "expired", before, _snapshot(credit), reason=reason)
        session.flush()
        return credits

    @staticmethod
    def _debit(credit: CustomerCredit, amount: Decimal, *, exhausted_status: str) -> None:
        balance = Decimal(credit.current_balance)
        if amount > balance:
            raise CreditBalanceIntegrityError(f"credit {credit.id} balance {balance} cannot cover {amount}")
        credit.current_balance = to_money(balance - amount)
        if credit.current_balance == ZERO:
            credit.status = exhausted_status


def publish_credit_created(credit: CustomerCredit) -> None:
    logger.info(
        "credit.created",
        extra={
            "credit_id": str(credit.id),
            "customer_id": str(credit.customer_id),
            "payment_id": str(credit.source_payment_id) if credit.source_payment_id else None,
            "amount": str(credit.original_amount),
        },
    )
    events.publish(
        {
            "event_type": "credit.created",
            "credit_id": str(credit.id),
            "customer_id": str(credit.customer_id),
            "source_payment_id": str(credit.source_payment_id) if credit.source_payment_id else None,
            "amount": str(credit.original_amount),
        }
    )


credit_service = CreditService()
