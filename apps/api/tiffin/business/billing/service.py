from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from tiffin import audit, events
from tiffin.business.billing.calculator import OrderSnapshot, calculate_order_billing, can_approve, combined_total
from tiffin.business.billing.models import MonthlyBilling, OrderBilling
from tiffin.business.billing.repository import (
    OPEN_MONTHLY_STATUSES,
    PAYABLE_STATUSES,
    RECOMPUTABLE_STATUSES,
    BillingRepository,
)
from tiffin.business.billing.schemas import BillingAuditRead, MonthlyBillingRead, OrderBillingRead
from tiffin.business.calendar.repository import CalendarRepository
from tiffin.core.errors import (
    BillingIntegrityError,
    ImmutableBillingError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tiffin.core.money import ZERO, to_money
from tiffin.core.periods import parse_billing_month
from tiffin.core.transactions import run_in_transaction
from tiffin.metrics import observe_billing_computation, observe_billing_transition


logger = logging.getLogger("tiffin.billing")

PER_TIFFIN_QUANTUM = Decimal("0.00000001")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _order_billing_snapshot(row: OrderBilling) -> dict[str, Any]:
    return {
        "status": row.status,
        "applicable_days": row.applicable_days,
        "delivered_count": row.delivered_count,
        "absent_count": row.absent_count,
        "extra_count": row.extra_count,
        "base_amount": row.base_amount,
        "extra_amount": row.extra_amount,
        "total_amount": row.total_amount,
    }


def _monthly_snapshot(row: MonthlyBilling) -> dict[str, Any]:
    return {
        "status": row.status,
        "payment_status": row.payment_status,
        "total_amount": row.total_amount,
        "amount_paid": row.amount_paid,
        "credit_applied": row.credit_applied,
    }


def to_monthly_read(row: MonthlyBilling) -> MonthlyBillingRead:
    constituents = list(row.order_billings)
    return MonthlyBillingRead(
        id=row.id,
        customer_id=row.customer_id,
        billing_month=row.billing_month,
        total_amount=row.total_amount,
        amount_paid=row.amount_paid,
        credit_applied=row.credit_applied,
        balance_due=row.balance_due,
        status=row.status,
        payment_status=row.payment_status,
        can_approve=can_approve(item.status for item in constituents),
        finalized_at=row.finalized_at,
        finalized_by=row.finalized_by,
        paid_at=row.paid_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        orders=[OrderBillingRead.model_validate(item) for item in constituents],
    )


@dataclass(slots=True)
class BillingService:
    """Per-order billings and the customer's combined monthly invoice."""

    repository: BillingRepository = BillingRepository()
    calendar_repository: CalendarRepository = CalendarRepository()

    # -- order billing -------------------------------------------------

    def compute_order_billing(
        self,
        session: Session,
        order_id: uuid.UUID,
        billing_month: str,
        actor: str = "system",
    ) -> OrderBillingRead:
        """Create or recompute the order's billing for the month.

        Recomputing is only possible while the row is ``calculating`` or
        ``pending``; anything later is frozen.
        """
        first_day, last_day = parse_billing_month(billing_month)

        def _compute() -> OrderBilling:
            order = self.calendar_repository.get_order(session, order_id)
            if order is None:
                raise NotFoundError("order not found")
            if order.start_date > last_day or order.end_date < first_day:
                raise ValidationError("order is not active in the billing month")

            billing = self.repository.find_order_billing(session, order_id, billing_month, for_update=True)
            if billing is not None and billing.status not in RECOMPUTABLE_STATUSES:
                observe_billing_computation("immutable")
                raise ImmutableBillingError(f"order billing is {billing.status} and can no longer be recomputed")

            monthly = self.repository.find_monthly(session, order.customer_id, billing_month, for_update=True)
            if monthly is not None and monthly.status not in OPEN_MONTHLY_STATUSES:
                observe_billing_computation("immutable")
                raise ImmutableBillingError(f"combined invoice is {monthly.status}; the month is closed for this customer")

            entries = self.calendar_repository.list_entries(session, order_id, first_day, last_day)
            breakdown = calculate_order_billing(
                OrderSnapshot(
                    price=Decimal(order.price),
                    start_date=order.start_date,
                    end_date=order.end_date,
                    weekdays_only=order.weekdays_only,
                    selected_days=tuple(order.selected_days or ()),
                    extra_price=Decimal(order.extra_price) if order.extra_price is not None else None,
                ),
                billing_month,
                [(item.entry_date, item.status) for item in entries],
            )

            created = billing is None
            before = None if created else _order_billing_snapshot(billing)
            if created:
                billing = OrderBilling(order_id=order_id, customer_id=order.customer_id, billing_month=billing_month)
                session.add(billing)

            billing.total_days = breakdown.total_days
            billing.applicable_days = breakdown.applicable_days
            billing.delivered_count = breakdown.delivered_count
            billing.absent_count = breakdown.absent_count
            billing.extra_count = breakdown.extra_count
            billing.per_tiffin_price = breakdown.per_tiffin_price.quantize(PER_TIFFIN_QUANTUM)
            billing.base_amount = breakdown.base_amount
            billing.extra_amount = breakdown.extra_amount
            billing.total_amount = breakdown.total_amount
            billing.status = "calculating"
            billing.calculated_at = _now()
            session.flush()

            after = _order_billing_snapshot(billing)
            if before != after:
                audit.record(session, actor, "order_billing", billing.id, "computed", before, after)
            self._refresh_combined(session, order.customer_id, billing_month, actor)
            observe_billing_computation("created" if created else "recomputed")
            return billing

        billing = run_in_transaction(session, _compute, name="billing.compute")
        logger.info(
            "billing.computed",
            extra={
                "billing_id": str(billing.id),
                "order_id": str(order_id),
                "billing_month": billing_month,
                "total_amount": str(billing.total_amount),
            },
        )
        events.publish(
            {
                "event_type": "billing.computed",
                "billing_id": str(billing.id),
                "order_id": str(order_id),
                "customer_id": str(billing.customer_id),
                "billing_month": billing_month,
                "total_amount": str(billing.total_amount),
            }
        )
        return OrderBillingRead.model_validate(billing)

    def submit_billing(self, session: Session, billing_id: uuid.UUID, actor: str) -> OrderBillingRead:
        return self._transition(session, billing_id, actor, ("calculating",), "pending", action="submitted")

    def finalize_billing(self, session: Session, billing_id: uuid.UUID, actor: str) -> OrderBillingRead:
        return self._transition(session, billing_id, actor, RECOMPUTABLE_STATUSES, "finalized", action="finalized")

    def reopen_billing(self, session: Session, billing_id: uuid.UUID, actor: str, reason: str) -> OrderBillingRead:
        if not reason.strip():
            raise ValidationError("reason is required to reopen a billing")
        return self._transition(session, billing_id, actor, ("finalized",), "calculating", action="reopened", reason=reason)

    def _transition(
        self,
        session: Session,
        billing_id: uuid.UUID,
        actor: str,
        allowed_from: tuple[str, ...],
        to_status: str,
        *,
        action: str,
        reason: str | None = None,
    ) -> OrderBillingRead:
        def _apply() -> OrderBilling:
            billing = self._get_order_billing(session, billing_id, for_update=True)
            if billing.status not in allowed_from:
                raise InvalidTransitionError(f"cannot move order billing from {billing.status} to {to_status}")
            monthly = self.repository.find_monthly(session, billing.customer_id, billing.billing_month, for_update=True)
            if monthly is not None and monthly.status not in OPEN_MONTHLY_STATUSES:
                raise InvalidTransitionError(f"combined invoice is already {monthly.status}")

            before = _order_billing_snapshot(billing)
            billing.status = to_status
            if to_status == "finalized":
                billing.finalized_at = _now()
                billing.finalized_by = actor
            elif to_status == "calculating":
                billing.finalized_at = None
                billing.finalized_by = None
            session.flush()
            audit.record(
                session,
                actor,
                "order_billing",
                billing.id,
                action,
                before,
                _order_billing_snapshot(billing),
                reason=reason,
            )
            self._refresh_combined(session, billing.customer_id, billing.billing_month, actor)
            return billing

        billing = run_in_transaction(session, _apply, name=f"billing.{action}")
        observe_billing_transition("order_billing", to_status)
        logger.info(
            f"billing.{action}",
            extra={"billing_id": str(billing.id), "billing_month": billing.billing_month, "status": billing.status},
        )
        events.publish(
            {
                "event_type": f"billing.{action}",
                "billing_id": str(billing.id),
                "customer_id": str(billing.customer_id),
                "billing_month": billing.billing_month,
                "actor": actor,
            }
        )
        return OrderBillingRead.model_validate(billing)

    def audit_order_billing(self, session: Session, billing_id: uuid.UUID) -> BillingAuditRead:
        billing = self._get_order_billing(session, billing_id)
        counted = billing.delivered_count + billing.absent_count + billing.extra_count
        if billing.applicable_days != counted:
            logger.error(
                "integrity_error",
                extra={
                    "operation": "billing.audit",
                    "error_kind": BillingIntegrityError.kind,
                    "billing_id": str(billing.id),
                },
            )
            raise BillingIntegrityError(
                f"applicable_days={billing.applicable_days} but delivered+absent+extra={counted}"
            )
        return BillingAuditRead(
            billing_id=billing.id,
            applicable_days=billing.applicable_days,
            delivered_count=billing.delivered_count,
            absent_count=billing.absent_count,
            extra_count=billing.extra_count,
            consistent=True,
        )

    def get_order_billing(self, session: Session, billing_id: uuid.UUID) -> OrderBillingRead:
        return OrderBillingRead.model_validate(self._get_order_billing(session, billing_id))

    def list_order_billings(self, session: Session, customer_id: uuid.UUID, billing_month: str) -> list[OrderBillingRead]:
        parse_billing_month(billing_month)
        rows = self.repository.list_order_billings(session, customer_id, billing_month)
        return [OrderBillingRead.model_validate(item) for item in rows]

    def handle_calendar_change(self, session: Session, order_id: uuid.UUID, billing_month: str) -> OrderBillingRead | None:
        """Keep an open billing in step with its calendar; frozen months are left alone."""
        billing = self.repository.find_order_billing(session, order_id, billing_month)
        if billing is not None and billing.status not in RECOMPUTABLE_STATUSES:
            logger.info(
                "billing.recompute_skipped",
                extra={"billing_id": str(billing.id), "billing_month": billing_month, "status": billing.status},
            )
            return None
        try:
            return self.compute_order_billing(session, order_id, billing_month)
        except ImmutableBillingError as exc:
            logger.info(
                "billing.recompute_skipped",
                extra={"order_id": str(order_id), "billing_month": billing_month, "error": str(exc.detail)},
            )
            return None

    # -- combined invoice ----------------------------------------------

    def _refresh_combined(self, session: Session, customer_id: uuid.UUID, billing_month: str, actor: str) -> MonthlyBilling:
        monthly = self.repository.find_monthly(session, customer_id, billing_month, for_update=True)
        if monthly is None:
            monthly = MonthlyBilling(customer_id=customer_id, billing_month=billing_month)
            session.add(monthly)
            session.flush()
        if monthly.status not in OPEN_MONTHLY_STATUSES:
            return monthly

        constituents = self.repository.list_order_billings(session, customer_id, billing_month)
        before = _monthly_snapshot(monthly)
        for item in constituents:
            item.monthly_billing = monthly
        monthly.total_amount = combined_total(item.total_amount for item in constituents)
        monthly.status = "pending" if can_approve(item.status for item in constituents) else "calculating"
        session.flush()
        after = _monthly_snapshot(monthly)
        if before != after:
            audit.record(session, actor, "monthly_billing", monthly.id, "refreshed", before, after)
        return monthly

    def refresh_combined(self, session: Session, customer_id: uuid.UUID, billing_month: str, actor: str = "system") -> MonthlyBillingRead:
        parse_billing_month(billing_month)
        monthly = run_in_transaction(
            session,
            lambda: self._refresh_combined(session, customer_id, billing_month, actor),
            name="billing.refresh_combined",
        )
        session.refresh(monthly)
        return to_monthly_read(monthly)

    def get_invoice(self, session: Session, invoice_id: uuid.UUID) -> MonthlyBillingRead:
        return to_monthly_read(self._get_monthly(session, invoice_id))

    def find_invoice(self, session: Session, customer_id: uuid.UUID, billing_month: str) -> MonthlyBillingRead:
        parse_billing_month(billing_month)
        monthly = self.repository.find_monthly(session, customer_id, billing_month)
        if monthly is None:
            raise NotFoundError("combined invoice not found")
        return to_monthly_read(monthly)

    def can_approve(self, session: Session, invoice_id: uuid.UUID) -> bool:
        monthly = self._get_monthly(session, invoice_id)
        return can_approve(item.status for item in monthly.order_billings)

    def approve_combined_invoice(self, session: Session, invoice_id: uuid.UUID, actor: str) -> MonthlyBillingRead:
        def _approve() -> MonthlyBilling:
            monthly = self._get_monthly(session, invoice_id, for_update=True)
            if monthly.status != "pending":
                raise InvalidTransitionError(f"cannot approve a combined invoice in status {monthly.status}")
            constituents = self.repository.list_order_billings(session, monthly.customer_id, monthly.billing_month)
            if not can_approve(item.status for item in constituents):
                raise InvalidTransitionError("every order billing must be finalized before approval")

            before = _monthly_snapshot(monthly)
            monthly.total_amount = combined_total(item.total_amount for item in constituents)
            monthly.status = "finalized"
            monthly.finalized_at = _now()
            monthly.finalized_by = actor
            for item in constituents:
                item.status = "approved"
            session.flush()
            audit.record(session, actor, "monthly_billing", monthly.id, "approved", before, _monthly_snapshot(monthly))
            return monthly

        monthly = run_in_transaction(session, _approve, name="billing.approve_combined")
        observe_billing_transition("monthly_billing", "finalized")
        logger.info(
            "billing.invoice_approved",
            extra={
                "billing_id": str(monthly.id),
                "customer_id": str(monthly.customer_id),
                "billing_month": monthly.billing_month,
                "total_amount": str(monthly.total_amount),
            },
        )
        events.publish(
            {
                "event_type": "billing.finalized",
                "invoice_id": str(monthly.id),
                "customer_id": str(monthly.customer_id),
                "billing_month": monthly.billing_month,
                "total_amount": str(monthly.total_amount),
            }
        )
        session.refresh(monthly)
        return to_monthly_read(monthly)

    def issue_combined_invoice(self, session: Session, invoice_id: uuid.UUID, actor: str) -> MonthlyBillingRead:
        def _issue() -> MonthlyBilling:
            monthly = self._get_monthly(session, invoice_id, for_update=True)
            if monthly.status != "finalized":
                raise InvalidTransitionError(f"cannot issue a combined invoice in status {monthly.status}")
            before = _monthly_snapshot(monthly)
            monthly.status = "invoiced"
            for item in monthly.order_billings:
                if item.status == "approved":
                    item.status = "invoiced"
            session.flush()
            audit.record(session, actor, "monthly_billing", monthly.id, "issued", before, _monthly_snapshot(monthly))
            return monthly

        monthly = run_in_transaction(session, _issue, name="billing.issue_combined")
        observe_billing_transition("monthly_billing", "invoiced")
        logger.info("billing.invoice_issued", extra={"billing_id": str(monthly.id), "billing_month": monthly.billing_month})
        events.publish(
            {
                "event_type": "billing.invoiced",
                "invoice_id": str(monthly.id),
                "customer_id": str(monthly.customer_id),
                "billing_month": monthly.billing_month,
            }
        )
        return to_monthly_read(monthly)

    def list_unpaid(self, session: Session, customer_id: uuid.UUID) -> list[MonthlyBillingRead]:
        return [to_monthly_read(item) for item in self.repository.list_unpaid(session, customer_id)]

    # -- settlement (driven by the payment allocator) -------------------

    @staticmethod
    def is_payable(monthly: MonthlyBilling) -> bool:
        return monthly.status in PAYABLE_STATUSES

    def apply_settlement(
        self,
        session: Session,
        monthly: MonthlyBilling,
        amount: Decimal,
        credit_amount: Decimal,
        actor: str,
    ) -> MonthlyBilling:
        """Book cash and credit against the invoice; callers hold its row lock."""
        before = _monthly_snapshot(monthly)
        monthly.amount_paid = to_money(Decimal(monthly.amount_paid) + amount)
        monthly.credit_applied = to_money(Decimal(monthly.credit_applied) + credit_amount)
        if monthly.balance_due < ZERO:
            raise ValidationError("settlement would exceed the invoice total")
        self._sync_payment_state(monthly)
        session.flush()
        audit.record(session, actor, "monthly_billing", monthly.id, "settled", before, _monthly_snapshot(monthly))
        return monthly

    def revert_settlement(
        self,
        session: Session,
        monthly: MonthlyBilling,
        amount: Decimal,
        credit_amount: Decimal,
        actor: str,
        *,
        reason: str | None = None,
    ) -> MonthlyBilling:
        before = _monthly_snapshot(monthly)
        monthly.amount_paid = to_money(Decimal(monthly.amount_paid) - amount)
        monthly.credit_applied = to_money(Decimal(monthly.credit_applied) - credit_amount)
        if monthly.amount_paid < ZERO or monthly.credit_applied < ZERO:
            raise BillingIntegrityError("reversal would leave a negative paid amount on the invoice")
        self._sync_payment_state(monthly)
        session.flush()
        audit.record(
            session,
            actor,
            "monthly_billing",
            monthly.id,
            "settlement_reverted",
            before,
            _monthly_snapshot(monthly),
            reason=reason,
        )
        return monthly

    @staticmethod
    def _sync_payment_state(monthly: MonthlyBilling) -> None:
        balance = monthly.balance_due
        settled = Decimal(monthly.amount_paid) + Decimal(monthly.credit_applied)
        if balance == ZERO and monthly.status != "paid":
            monthly.status_before_paid = monthly.status
            monthly.status = "paid"
            monthly.paid_at = _now()
            for item in monthly.order_billings:
                item.status = "paid"
            observe_billing_transition("monthly_billing", "paid")
        elif balance > ZERO and monthly.status == "paid":
            restored = monthly.status_before_paid or "finalized"
            monthly.status = restored
            monthly.status_before_paid = None
            monthly.paid_at = None
            for item in monthly.order_billings:
                item.status = "invoiced" if restored == "invoiced" else "approved"
            observe_billing_transition("monthly_billing", restored)

        if balance == ZERO:
            monthly.payment_status = "paid"
        elif settled > ZERO:
            monthly.payment_status = "partial"
        else:
            monthly.payment_status = "unpaid"

    # -- lookups ---------------------------------------------------------

    def _get_order_billing(self, session: Session, billing_id: uuid.UUID, *, for_update: bool = False) -> OrderBilling:
        billing = self.repository.get_order_billing(session, billing_id, for_update=for_update)
        if billing is None:
            raise NotFoundError("order billing not found")
        return billing

    def _get_monthly(self, session: Session, invoice_id: uuid.UUID, *, for_update: bool = False) -> MonthlyBilling:
        monthly = self.repository.get_monthly(session, invoice_id, for_update=for_update)
        if monthly is None:
            raise NotFoundError("combined invoice not found")
        return monthly


billing_service = BillingService()
