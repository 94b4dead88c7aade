from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from tiffin import audit, events
from tiffin.business.credit.models import CustomerCredit
from tiffin.business.credit.repository import CreditRepository
from tiffin.business.credit.service import CreditService, credit_service
from tiffin.business.payments.repository import PaymentRepository
from tiffin.business.refunds.models import RefundRequest
from tiffin.business.refunds.repository import RefundRepository
from tiffin.business.refunds.schemas import RefundCreate, RefundRead
from tiffin.core.errors import InsufficientCreditError, InvalidTransitionError, NotFoundError, ValidationError
from tiffin.core.money import require_money
from tiffin.core.transactions import run_in_transaction
from tiffin.metrics import observe_refund
from tiffin.otel import get_tracer, ledger_span


logger = logging.getLogger("tiffin.refunds")
tracer = get_tracer("tiffin.refunds")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(refund: RefundRequest) -> dict[str, Any]:
    return {"status": refund.status, "refund_amount": refund.refund_amount, "credit_id": refund.credit_id}


@dataclass(slots=True)
class RefundService:
    """Two-step refunds: a request touches nothing, approval debits the credit."""

    repository: RefundRepository = RefundRepository()
    credit_repository: CreditRepository = CreditRepository()
    payment_repository: PaymentRepository = PaymentRepository()
    credits: CreditService = field(default_factory=lambda: credit_service)

    def request_refund(self, session: Session, payload: RefundCreate) -> RefundRead:
        amount = require_money(payload.refund_amount, "refund_amount")

        def _request() -> RefundRequest:
            credit, payment_id = self._resolve_source(session, payload)
            if amount > Decimal(credit.current_balance):
                raise InsufficientCreditError(
                    f"refund amount {amount} exceeds credit balance {credit.current_balance}"
                )
            refund = RefundRequest(
                customer_id=payload.customer_id,
                source_type=payload.source_type,
                credit_id=credit.id,
                payment_record_id=payment_id,
                refund_amount=amount,
                refund_method=payload.refund_method,
                refund_date=payload.refund_date,
                reason=payload.reason,
                status="pending",
                requested_by=payload.requested_by,
            )
            session.add(refund)
            session.flush()
            audit.record(session, payload.requested_by, "refund_request", refund.id, "requested", None, _snapshot(refund))
            return refund

        refund = run_in_transaction(session, _request, name="refunds.request")
        observe_refund("pending")
        logger.info(
            "refund.requested",
            extra={
                "refund_id": str(refund.id),
                "customer_id": str(refund.customer_id),
                "credit_id": str(refund.credit_id),
                "amount": str(refund.refund_amount),
            },
        )
        events.publish(
            {
                "event_type": "refund.requested",
                "refund_id": str(refund.id),
                "customer_id": str(refund.customer_id),
                "credit_id": str(refund.credit_id),
                "refund_amount": str(refund.refund_amount),
            }
        )
        return RefundRead.model_validate(refund)

    def approve_refund(
        self,
        session: Session,
        refund_id: uuid.UUID,
        approved_by: str,
        reference: str | None = None,
    ) -> RefundRead:
        def _approve() -> RefundRequest:
            refund = self._get(session, refund_id, for_update=True)
            if refund.status != "pending":
                raise InvalidTransitionError(f"only pending refunds can be approved; this one is {refund.status}")
            if refund.credit_id is None:
                raise ValidationError("refund has no credit to draw from")
            credit = self.credits.get_model(session, refund.credit_id, for_update=True)
            before = _snapshot(refund)
            self.credits.apply_refund(session, credit, Decimal(refund.refund_amount), approved_by)
            refund.status = "completed"
            refund.approved_by = approved_by
            refund.approved_at = _now()
            if reference is not None:
                refund.reference = reference
            session.flush()
            audit.record(session, approved_by, "refund_request", refund.id, "approved", before, _snapshot(refund))
            return refund

        with ledger_span(tracer, "refund.approve", refund_id=refund_id):
            refund = run_in_transaction(session, _approve, name="refunds.approve")
        observe_refund("completed")
        logger.info(
            "refund.completed",
            extra={"refund_id": str(refund.id), "credit_id": str(refund.credit_id), "amount": str(refund.refund_amount)},
        )
        events.publish(
            {
                "event_type": "refund.completed",
                "refund_id": str(refund.id),
                "customer_id": str(refund.customer_id),
                "credit_id": str(refund.credit_id),
                "refund_amount": str(refund.refund_amount),
                "approved_by": approved_by,
            }
        )
        return RefundRead.model_validate(refund)

    def cancel_refund(self, session: Session, refund_id: uuid.UUID, cancelled_by: str = "admin") -> RefundRead:
        def _cancel() -> RefundRequest:
            refund = self._get(session, refund_id, for_update=True)
            if refund.status != "pending":
                raise InvalidTransitionError(f"only pending refunds can be cancelled; this one is {refund.status}")
            before = _snapshot(refund)
            refund.status = "cancelled"
            refund.cancelled_by = cancelled_by
            refund.cancelled_at = _now()
            session.flush()
            audit.record(session, cancelled_by, "refund_request", refund.id, "cancelled", before, _snapshot(refund))
            return refund

        refund = run_in_transaction(session, _cancel, name="refunds.cancel")
        observe_refund("cancelled")
        logger.info("refund.cancelled", extra={"refund_id": str(refund.id)})
        events.publish(
            {
                "event_type": "refund.cancelled",
                "refund_id": str(refund.id),
                "customer_id": str(refund.customer_id),
            }
        )
        return RefundRead.model_validate(refund)

    def get_refund(self, session: Session, refund_id: uuid.UUID) -> RefundRead:
        return RefundRead.model_validate(self._get(session, refund_id))

    def list_refunds(
        self,
        session: Session,
        customer_id: uuid.UUID | None = None,
        status: str | None = None,
    ) -> list[RefundRead]:
        return [RefundRead.model_validate(item) for item in self.repository.list_requests(session, customer_id, status)]

    def _resolve_source(self, session: Session, payload: RefundCreate) -> tuple[CustomerCredit, uuid.UUID | None]:
        if payload.source_type == "credit":
            credit = self.credits.get_model(session, payload.source_id)
            if credit.customer_id != payload.customer_id:
                raise ValidationError("credit belongs to a different customer")
            if credit.status != "available":
                raise ValidationError(f"credit is {credit.status} and cannot be refunded")
            return credit, credit.source_payment_id

        payment = self.payment_repository.get(session, payload.source_id)
        if payment is None:
            raise NotFoundError("payment not found")
        if payment.customer_id != payload.customer_id:
            raise ValidationError("payment belongs to a different customer")
        available = [
            item
            for item in self.credit_repository.list_by_source_payment(session, payment.id)
            if item.status == "available"
        ]
        if not available:
            raise ValidationError("payment has no excess credit left to refund")
        return available[0], payment.id

    def _get(self, session: Session, refund_id: uuid.UUID, *, for_update: bool = False) -> RefundRequest:
        refund = self.repository.get(session, refund_id, for_update=for_update)
        if refund is None:
            raise NotFoundError("refund not found")
        return refund


refund_service = RefundService()
