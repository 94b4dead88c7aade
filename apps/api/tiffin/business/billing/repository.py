from __future__ import annotations

import uuid

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from tiffin.business.billing.models import MonthlyBilling, OrderBilling


PAYABLE_STATUSES = ("finalized", "invoiced")
RECOMPUTABLE_STATUSES = ("calculating", "pending")
OPEN_MONTHLY_STATUSES = ("calculating", "pending")


class BillingRepository:
    @staticmethod
    def _lock(stmt: Select, for_update: bool) -> Select:
        return stmt.with_for_update() if for_update else stmt

    def get_order_billing(self, session: Session, billing_id: uuid.UUID, *, for_update: bool = False) -> OrderBilling | None:
        stmt = select(OrderBilling).where(OrderBilling.id == billing_id)
        return session.scalar(self._lock(stmt, for_update))

    def find_order_billing(
        self,
        session: Session,
        order_id: uuid.UUID,
        billing_month: str,
        *,
        for_update: bool = False,
    ) -> OrderBilling | None:
        stmt = select(OrderBilling).where(OrderBilling.order_id == order_id, OrderBilling.billing_month == billing_month)
        return session.scalar(self._lock(stmt, for_update))

    def frozen_month_reason(
        self,
        session: Session,
        order_id: uuid.UUID,
        customer_id: uuid.UUID,
        billing_month: str,
    ) -> str | None:
        """Why the month is closed to calendar edits, or ``None`` while it is still open."""
        billing = self.find_order_billing(session, order_id, billing_month, for_update=True)
        if billing is not None and billing.status not in RECOMPUTABLE_STATUSES:
            return f"order billing is {billing.status}"
        monthly = self.find_monthly(session, customer_id, billing_month, for_update=True)
        if monthly is not None and monthly.status not in OPEN_MONTHLY_STATUSES:
            return f"combined invoice is {monthly.status}"
        return None

    def list_order_billings(self, session: Session, customer_id: uuid.UUID, billing_month: str) -> list[OrderBilling]:
        stmt = (
            select(OrderBilling)
            .where(OrderBilling.customer_id == customer_id, OrderBilling.billing_month == billing_month)
            .order_by(OrderBilling.created_at.asc(), OrderBilling.id.asc())
        )
        return list(session.scalars(stmt).all())

    def get_monthly(self, session: Session, monthly_id: uuid.UUID, *, for_update: bool = False) -> MonthlyBilling | None:
        stmt = (
            select(MonthlyBilling)
            .where(MonthlyBilling.id == monthly_id)
            .options(selectinload(MonthlyBilling.order_billings))
        )
        return session.scalar(self._lock(stmt, for_update))

    def find_monthly(
        self,
        session: Session,
        customer_id: uuid.UUID,
        billing_month: str,
        *,
        for_update: bool = False,
    ) -> MonthlyBilling | None:
        stmt = select(MonthlyBilling).where(
            MonthlyBilling.customer_id == customer_id,
            MonthlyBilling.billing_month == billing_month,
        )
        return session.scalar(self._lock(stmt, for_update))

    def list_unpaid(self, session: Session, customer_id: uuid.UUID, *, for_update: bool = False) -> list[MonthlyBilling]:
        """Payable invoices with money still owed, oldest billing month first, id as tie-break."""
        stmt = (
            select(MonthlyBilling)
            .where(
                MonthlyBilling.customer_id == customer_id,
                MonthlyBilling.status.in_(PAYABLE_STATUSES),
            )
            .order_by(MonthlyBilling.billing_month.asc(), MonthlyBilling.id.asc())
        )
        # balance_due is compared on Decimals here, not in SQL arithmetic
        return [row for row in session.scalars(self._lock(stmt, for_update)).all() if row.balance_due > 0]

    def lock_invoices(self, session: Session, invoice_ids: list[uuid.UUID]) -> dict[uuid.UUID, MonthlyBilling]:
        if not invoice_ids:
            return {}
        stmt = select(MonthlyBilling).where(MonthlyBilling.id.in_(invoice_ids)).with_for_update()
        return {row.id: row for row in session.scalars(stmt).all()}
