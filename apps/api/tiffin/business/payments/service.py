from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from tiffin import audit, events
from tiffin.business.billing.models import MonthlyBilling
from tiffin.business.billing.repository import BillingRepository
from tiffin.business.billing.service import BillingService, billing_service
from tiffin.business.credit.models import CustomerCredit
from tiffin.business.credit.repository import CreditRepository
from tiffin.business.credit.service import CreditService, credit_service, publish_credit_created
from tiffin.business.payments.models import PaymentAllocation, PaymentRecord
from tiffin.business.payments.repository import PaymentRepository
from tiffin.business.payments.schemas import (
    AllocationEntry,
    AllocationResult,
    AutoSelection,
    AutoSelectRead,
    PaymentAllocationRead,
    PaymentCreate,
    PaymentRead,
)
from tiffin.business.refunds.repository import RefundRepository
from tiffin.core.config import get_settings
from tiffin.core.errors import (
    InsufficientCreditError,
    NotFoundError,
    OverAllocationError,
    ValidationError,
)
from tiffin.core.money import ZERO, require_money, to_money
from tiffin.core.transactions import run_in_transaction
from tiffin.metrics import observe_payment_allocation, observe_payment_deletion, observe_refund
from tiffin.otel import get_tracer, ledger_span


logger = logging.getLogger("tiffin.payments")
tracer = get_tracer("tiffin.payments")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _payment_snapshot(payment: PaymentRecord) -> dict[str, Any]:
    return {
        "allocation_status": payment.allocation_status,
        "total_allocated": payment.total_allocated,
        "excess_amount": payment.excess_amount,
        "deleted_at": payment.deleted_at,
    }


def plan_auto_allocation(
    invoices: list[MonthlyBilling],
    payment_amount: Decimal,
    max_invoices: int | None = None,
) -> list[AutoSelection]:
    """Walk ``invoices`` (already oldest first) paying each as far as the money reaches."""
    selections: list[AutoSelection] = []
    remaining = payment_amount
    for invoice in invoices:
        if remaining <= ZERO:
            break
        if max_invoices is not None and len(selections) >= max_invoices:
            break
        balance = invoice.balance_due
        if balance <= ZERO:
            continue
        amount = min(balance, remaining)
        selections.append(
            AutoSelection(
                invoice_id=invoice.id,
                billing_month=invoice.billing_month,
                balance_due=balance,
                amount=amount,
            )
        )
        remaining -= amount
    return selections


@dataclass(slots=True)
class _Outcome:
    payment: PaymentRecord
    mode: str
    allocations: list[PaymentAllocation] = field(default_factory=list)
    credit_applied: Decimal = ZERO
    credit: CustomerCredit | None = None


@dataclass(slots=True)
class PaymentService:
    """Records payments and spreads them across the customer's payable invoices."""

    repository: PaymentRepository = PaymentRepository()
    billing_repository: BillingRepository = BillingRepository()
    credit_repository: CreditRepository = CreditRepository()
    refund_repository: RefundRepository = RefundRepository()
    billing: BillingService = field(default_factory=lambda: billing_service)
    credits: CreditService = field(default_factory=lambda: credit_service)

    def create_payment(self, session: Session, payload: PaymentCreate) -> PaymentRead:
        amount = require_money(payload.amount, "amount")

        def _create() -> _Outcome | PaymentRecord:
            payment = PaymentRecord(
                customer_id=payload.customer_id,
                amount=amount,
                payment_date=payload.payment_date,
                source=payload.source,
                reference=payload.reference,
                notes=payload.notes,
                created_by=payload.created_by,
                allocation_status="unallocated",
                total_allocated=ZERO,
                excess_amount=ZERO,
            )
            session.add(payment)
            session.flush()
            audit.record(session, payload.created_by, "payment_record", payment.id, "created", None, _payment_snapshot(payment))
            if payload.allocations is None:
                return payment
            return self._allocate(session, payment, payload.allocations, payload.created_by)

        with ledger_span(tracer, "payment.create", customer_id=payload.customer_id, amount=amount):
            result = run_in_transaction(session, _create, name="payments.create")

        payment = result.payment if isinstance(result, _Outcome) else result
        logger.info(
            "payment.created",
            extra={"payment_id": str(payment.id), "customer_id": str(payment.customer_id), "amount": str(payment.amount)},
        )
        events.publish(
            {
                "event_type": "payment.created",
                "payment_id": str(payment.id),
                "customer_id": str(payment.customer_id),
                "amount": str(payment.amount),
                "source": payment.source,
            }
        )
        if isinstance(result, _Outcome):
            self._after_allocation(result)
        return self.get_payment(session, payment.id)

    def auto_select_invoices(
        self,
        session: Session,
        customer_id: uuid.UUID,
        payment_amount: Decimal,
        max_invoices: int | None = None,
    ) -> AutoSelectRead:
        """Preview what automatic allocation would do; nothing is written."""
        amount = require_money(payment_amount, "payment_amount")
        if amount <= ZERO:
            raise ValidationError("payment_amount must be greater than zero")
        if max_invoices is not None and max_invoices < 1:
            raise ValidationError("max_invoices must be at least 1")
        cap = max_invoices if max_invoices is not None else get_settings().auto_select_max_invoices
        selections = plan_auto_allocation(self.billing_repository.list_unpaid(session, customer_id), amount, cap)
        total = sum((Decimal(item.amount) for item in selections), start=ZERO)
        return AutoSelectRead(
            customer_id=customer_id,
            payment_amount=amount,
            selections=selections,
            total_selected=total,
            excess_amount=amount - total,
        )

    def allocate_payment(
        self,
        session: Session,
        payment_id: uuid.UUID,
        allocations: list[AllocationEntry] | None = None,
        actor: str = "admin",
    ) -> AllocationResult:
        """Allocate a payment once. ``None`` or an empty list means automatic mode."""

        def _apply() -> _Outcome:
            payment = self._get_payment(session, payment_id, for_update=True)
            return self._allocate(session, payment, allocations, actor)

        with ledger_span(tracer, "payment.allocate", payment_id=payment_id, mode="manual" if allocations else "auto"):
            outcome = run_in_transaction(session, _apply, name="payments.allocate")
        self._after_allocation(outcome)
        return self._to_result(outcome)

    def delete_payment(self, session: Session, payment_id: uuid.UUID, reason: str, deleted_by: str = "admin") -> PaymentRead:
        """Soft-delete a payment and unwind every allocation and credit movement it caused."""
        if not reason or not reason.strip():
            raise ValidationError("a reason is required to delete a payment")

        def _delete() -> tuple[PaymentRecord, int]:
            payment = self._get_payment(session, payment_id, for_update=True)
            before = _payment_snapshot(payment)

            source_credits = self.credits.invalidate_source_credits(session, payment.id, deleted_by, reason=reason)
            cancelled = 0
            for refund in self.refund_repository.list_pending_for_credits(session, [item.id for item in source_credits]):
                refund.status = "cancelled"
                refund.cancelled_at = _now()
                refund.cancelled_by = deleted_by
                audit.record(
                    session,
                    deleted_by,
                    "refund_request",
                    refund.id,
                    "cancelled",
                    {"status": "pending"},
                    {"status": "cancelled"},
                    reason=reason,
                )
                cancelled += 1

            allocations = self.repository.list_allocations(session, payment.id, active_only=True)
            invoices = self.billing_repository.lock_invoices(session, [item.billing_id for item in allocations])
            for allocation in allocations:
                invoice = invoices.get(allocation.billing_id)
                if invoice is None:
                    raise NotFoundError(f"invoice {allocation.billing_id} not found")
                for usage in self.credit_repository.list_active_usages_for_payment(session, payment.id, invoice.id):
                    self.credits.restore_usage(session, usage, deleted_by, reason=reason)
                self.billing.revert_settlement(
                    session,
                    invoice,
                    Decimal(allocation.allocated_amount),
                    Decimal(allocation.credit_amount_used),
                    deleted_by,
                    reason=reason,
                )
                allocation.reversed_at = _now()

            payment.deleted_at = _now()
            payment.deleted_by = deleted_by
            payment.delete_reason = reason
            session.flush()
            audit.record(session, deleted_by, "payment_record", payment.id, "deleted", before, _payment_snapshot(payment), reason=reason)
            return payment, cancelled

        with ledger_span(tracer, "payment.delete", payment_id=payment_id):
            payment, cancelled = run_in_transaction(session, _delete, name="payments.delete")

        observe_payment_deletion()
        for _ in range(cancelled):
            observe_refund("cancelled")
        logger.info(
            "payment.deleted",
            extra={"payment_id": str(payment.id), "customer_id": str(payment.customer_id), "amount": str(payment.amount)},
        )
        events.publish(
            {
                "event_type": "payment.deleted",
                "payment_id": str(payment.id),
                "customer_id": str(payment.customer_id),
                "reason": reason,
                "deleted_by": deleted_by,
            }
        )
        session.refresh(payment)
        return self._to_payment_read(session, payment)

    def get_payment(self, session: Session, payment_id: uuid.UUID, *, include_deleted: bool = False) -> PaymentRead:
        payment = self.repository.get(session, payment_id, include_deleted=include_deleted)
        if payment is None:
            raise NotFoundError("payment not found")
        return self._to_payment_read(session, payment)

    def list_payments(self, session: Session, customer_id: uuid.UUID, *, include_deleted: bool = False) -> list[PaymentRead]:
        rows = self.repository.list_for_customer(session, customer_id, include_deleted=include_deleted)
        return [self._to_payment_read(session, item) for item in rows]

    def list_allocations(self, session: Session, payment_id: uuid.UUID) -> list[PaymentAllocationRead]:
        payment = self.repository.get(session, payment_id, include_deleted=True)
        if payment is None:
            raise NotFoundError("payment not found")
        return [PaymentAllocationRead.model_validate(item) for item in self.repository.list_allocations(session, payment_id)]

    # -- allocation core --------------------------------------------------

    def _allocate(
        self,
        session: Session,
        payment: PaymentRecord,
        requested: list[AllocationEntry] | None,
        actor: str,
    ) -> _Outcome:
        if payment.allocation_status != "unallocated":
            raise ValidationError(f"payment is already {payment.allocation_status}; delete it to allocate again")

        amount = Decimal(payment.amount)
        if requested:
            mode = "manual"
            entries = [
                (item.invoice_id, require_money(item.amount, "amount"), require_money(item.credit_amount, "credit_amount"))
                for item in requested
            ]
            invoice_ids = [item[0] for item in entries]
            if len(set(invoice_ids)) != len(invoice_ids):
                raise ValidationError("each invoice may appear only once per allocation request")
            invoices = self.billing_repository.lock_invoices(session, invoice_ids)
        else:
            mode = "auto"
            unpaid = self.billing_repository.list_unpaid(session, payment.customer_id, for_update=True)
            invoices = {item.id: item for item in unpaid}
            plan = plan_auto_allocation(unpaid, amount, get_settings().auto_select_max_invoices)
            entries = [(item.invoice_id, Decimal(item.amount), ZERO) for item in plan]

        self._validate(session, payment, entries, invoices)

        outcome = _Outcome(payment=payment, mode=mode)
        before = _payment_snapshot(payment)
        total_allocated = ZERO
        for order, (invoice_id, cash, credit) in enumerate(entries, start=1):
            invoice = invoices[invoice_id]
            balance_before = invoice.balance_due
            if credit > ZERO:
                self.credits.consume(session, payment.customer_id, invoice.id, payment.id, credit, actor)
            self.billing.apply_settlement(session, invoice, cash, credit, actor)
            allocation = PaymentAllocation(
                payment_record_id=payment.id,
                billing_id=invoice.id,
                customer_id=payment.customer_id,
                allocation_order=order,
                allocated_amount=cash,
                credit_amount_used=credit,
                balance_before=balance_before,
                balance_after=invoice.balance_due,
                resulting_status=invoice.payment_status,
            )
            session.add(allocation)
            outcome.allocations.append(allocation)
            outcome.credit_applied += credit
            total_allocated += cash

        payment.total_allocated = to_money(total_allocated)
        payment.excess_amount = to_money(amount - total_allocated)
        if payment.excess_amount > ZERO:
            outcome.credit = self.credits.create_from_excess(
                session, payment.customer_id, payment.id, Decimal(payment.excess_amount), actor
            )
            payment.allocation_status = "has_excess"
        elif not outcome.allocations:
            payment.allocation_status = "unallocated"
        elif all(invoices[item.billing_id].balance_due == ZERO for item in outcome.allocations):
            payment.allocation_status = "fully_allocated"
        else:
            payment.allocation_status = "partial"
        session.flush()
        audit.record(session, actor, "payment_record", payment.id, f"allocated_{mode}", before, _payment_snapshot(payment))
        return outcome

    def _validate(
        self,
        session: Session,
        payment: PaymentRecord,
        entries: list[tuple[uuid.UUID, Decimal, Decimal]],
        invoices: dict[uuid.UUID, MonthlyBilling],
    ) -> None:
        """Reject the whole request before anything is written."""
        remaining_credit = self.credits.available_total(session, payment.customer_id, for_update=True)
        total = ZERO
        for invoice_id, cash, credit in entries:
            invoice = invoices.get(invoice_id)
            if invoice is None:
                raise NotFoundError(f"invoice {invoice_id} not found")
            if invoice.customer_id != payment.customer_id:
                raise ValidationError(f"invoice {invoice_id} belongs to a different customer")
            if not self.billing.is_payable(invoice):
                raise ValidationError(f"invoice {invoice_id} is {invoice.status} and cannot take payments")
            if cash < ZERO or credit < ZERO:
                raise ValidationError("allocation amounts cannot be negative")
            if cash == ZERO and credit == ZERO:
                raise ValidationError(f"allocation for invoice {invoice_id} moves no money")
            balance = invoice.balance_due
            if cash > balance:
                raise OverAllocationError(f"amount {cash} exceeds invoice {invoice_id} balance due {balance}")
            if credit > balance - cash:
                raise OverAllocationError(f"credit {credit} exceeds the invoice {invoice_id} balance left after payment")
            if credit > remaining_credit:
                raise InsufficientCreditError(f"credit {credit} exceeds available credit {remaining_credit}")
            remaining_credit -= credit
            total += cash
        if total > Decimal(payment.amount):
            raise OverAllocationError(f"allocations total {total} exceed payment amount {payment.amount}")

    def _after_allocation(self, outcome: _Outcome) -> None:
        payment = outcome.payment
        allocated = float(Decimal(payment.total_allocated) + outcome.credit_applied)
        observe_payment_allocation(outcome.mode, payment.allocation_status, allocated)
        logger.info(
            "payment.allocated",
            extra={
                "payment_id": str(payment.id),
                "customer_id": str(payment.customer_id),
                "status": payment.allocation_status,
                "total_amount": str(payment.total_allocated),
                "excess_amount": str(payment.excess_amount),
            },
        )
        events.publish(
            {
                "event_type": "payment.allocated",
                "payment_id": str(payment.id),
                "customer_id": str(payment.customer_id),
                "mode": outcome.mode,
                "allocation_status": payment.allocation_status,
                "total_allocated": str(payment.total_allocated),
                "excess_amount": str(payment.excess_amount),
                "credit_applied": str(to_money(outcome.credit_applied)),
                "invoice_ids": [str(item.billing_id) for item in outcome.allocations],
            }
        )
        if outcome.credit is not None:
            publish_credit_created(outcome.credit)

    # -- lookups and mapping ------------------------------------------------

    def _get_payment(self, session: Session, payment_id: uuid.UUID, *, for_update: bool = False) -> PaymentRecord:
        payment = self.repository.get(session, payment_id, for_update=for_update)
        if payment is None:
            raise NotFoundError("payment not found")
        return payment

    @staticmethod
    def _to_result(outcome: _Outcome) -> AllocationResult:
        payment = outcome.payment
        return AllocationResult(
            payment_id=payment.id,
            mode=outcome.mode,
            allocation_status=payment.allocation_status,
            total_allocated=payment.total_allocated,
            excess_amount=payment.excess_amount,
            credit_applied=to_money(outcome.credit_applied),
            credit_id=outcome.credit.id if outcome.credit is not None else None,
            allocations=[PaymentAllocationRead.model_validate(item) for item in outcome.allocations],
        )

    def _to_payment_read(self, session: Session, payment: PaymentRecord) -> PaymentRead:
        read = PaymentRead.model_validate(payment, from_attributes=True)
        read.allocations = [
            PaymentAllocationRead.model_validate(item) for item in self.repository.list_allocations(session, payment.id)
        ]
        return read


payment_service = PaymentService()
