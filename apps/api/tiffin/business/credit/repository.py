from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tiffin.business.credit.models import CreditUsage, CustomerCredit
from tiffin.core.money import ZERO


class CreditRepository:
    def get(self, session: Session, credit_id: uuid.UUID, *, for_update: bool = False) -> CustomerCredit | None:
        stmt = select(CustomerCredit).where(CustomerCredit.id == credit_id)
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)

    def list_for_customer(self, session: Session, customer_id: uuid.UUID, status: str | None = None) -> list[CustomerCredit]:
        stmt = select(CustomerCredit).where(CustomerCredit.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(CustomerCredit.status == status)
        stmt = stmt.order_by(CustomerCredit.created_at.asc(), CustomerCredit.id.asc())
        return list(session.scalars(stmt).all())

    def list_available(self, session: Session, customer_id: uuid.UUID, *, for_update: bool = False) -> list[CustomerCredit]:
        """Spendable credits, oldest first with id as tie-break."""
        stmt = (
            select(CustomerCredit)
            .where(
                CustomerCredit.customer_id == customer_id,
                CustomerCredit.status == "available",
                CustomerCredit.current_balance > 0,
            )
            .order_by(CustomerCredit.created_at.asc(), CustomerCredit.id.asc())
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(session.scalars(stmt).all())

    def list_by_source_payment(self, session: Session, payment_id: uuid.UUID, *, for_update: bool = False) -> list[CustomerCredit]:
        stmt = (
            select(CustomerCredit)
            .where(CustomerCredit.source_payment_id == payment_id)
            .order_by(CustomerCredit.created_at.asc(), CustomerCredit.id.asc())
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(session.scalars(stmt).all())

    def list_usages(self, session: Session, credit_id: uuid.UUID) -> list[CreditUsage]:
        stmt = select(CreditUsage).where(CreditUsage.credit_id == credit_id).order_by(CreditUsage.created_at.asc())
        return list(session.scalars(stmt).all())

    def list_active_usages_for_payment(self, session: Session, payment_id: uuid.UUID, billing_id: uuid.UUID) -> list[CreditUsage]:
        stmt = (
            select(CreditUsage)
            .where(
                CreditUsage.payment_record_id == payment_id,
                CreditUsage.billing_id == billing_id,
                CreditUsage.reversed_at.is_(None),
            )
            .order_by(CreditUsage.created_at.asc(), CreditUsage.id.asc())
        )
        return list(session.scalars(stmt).all())

    def used_amount(self, session: Session, credit_id: uuid.UUID) -> Decimal:
        total = session.scalar(
            select(func.coalesce(func.sum(CreditUsage.amount_used), 0)).where(
                CreditUsage.credit_id == credit_id,
                CreditUsage.reversed_at.is_(None),
            )
        )
        return Decimal(str(total or ZERO))
