from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from tiffin.business.payments.models import PaymentAllocation, PaymentRecord


class PaymentRepository:
    def get(
        self,
        session: Session,
        payment_id: uuid.UUID,
        *,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> PaymentRecord | None:
        stmt = select(PaymentRecord).where(PaymentRecord.id == payment_id)
        if not include_deleted:
            stmt = stmt.where(PaymentRecord.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)

    def list_for_customer(self, session: Session, customer_id: uuid.UUID, *, include_deleted: bool = False) -> list[PaymentRecord]:
        stmt = select(PaymentRecord).where(PaymentRecord.customer_id == customer_id)
        if not include_deleted:
            stmt = stmt.where(PaymentRecord.deleted_at.is_(None))
        stmt = stmt.order_by(PaymentRecord.payment_date.asc(), PaymentRecord.created_at.asc())
        return list(session.scalars(stmt).all())

    def list_allocations(self, session: Session, payment_id: uuid.UUID, *, active_only: bool = False) -> list[PaymentAllocation]:
        stmt = select(PaymentAllocation).where(PaymentAllocation.payment_record_id == payment_id)
        if active_only:
            stmt = stmt.where(PaymentAllocation.reversed_at.is_(None))
        stmt = stmt.order_by(PaymentAllocation.allocation_order.asc())
        return list(session.scalars(stmt).all())
