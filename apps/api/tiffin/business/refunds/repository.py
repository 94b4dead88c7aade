from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from tiffin.business.refunds.models import RefundRequest


class RefundRepository:
    def get(self, session: Session, refund_id: uuid.UUID, *, for_update: bool = False) -> RefundRequest | None:
        stmt = select(RefundRequest).where(RefundRequest.id == refund_id)
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)

    def list_requests(self, session: Session, customer_id: uuid.UUID | None = None, status: str | None = None) -> list[RefundRequest]:
        stmt = select(RefundRequest)
        if customer_id is not None:
            stmt = stmt.where(RefundRequest.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(RefundRequest.status == status)
        stmt = stmt.order_by(RefundRequest.created_at.asc(), RefundRequest.id.asc())
        return list(session.scalars(stmt).all())

    def list_pending_for_credits(self, session: Session, credit_ids: list[uuid.UUID]) -> list[RefundRequest]:
        if not credit_ids:
            return []
        stmt = (
            select(RefundRequest)
            .where(RefundRequest.credit_id.in_(credit_ids), RefundRequest.status == "pending")
            .with_for_update()
        )
        return list(session.scalars(stmt).all())
