from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from tiffin.business.refunds.schemas import ApproveRefundRequest, CancelRefundRequest, RefundCreate, RefundRead
from tiffin.business.refunds.service import refund_service
from tiffin.core.database import get_db


router = APIRouter(prefix="/refunds", tags=["refunds"])


@router.post("", response_model=RefundRead, status_code=status.HTTP_201_CREATED)
def request_refund(payload: RefundCreate, db: Session = Depends(get_db)) -> RefundRead:
    return refund_service.request_refund(db, payload)


@router.get("", response_model=list[RefundRead])
def list_refunds(
    customer_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[RefundRead]:
    return refund_service.list_refunds(db, customer_id, status_filter)


@router.get("/{refund_id}", response_model=RefundRead)
def get_refund(refund_id: uuid.UUID, db: Session = Depends(get_db)) -> RefundRead:
    return refund_service.get_refund(db, refund_id)


@router.post("/{refund_id}/approve", response_model=RefundRead)
def approve_refund(refund_id: uuid.UUID, payload: ApproveRefundRequest, db: Session = Depends(get_db)) -> RefundRead:
    return refund_service.approve_refund(db, refund_id, payload.approved_by, payload.reference)


@router.post("/{refund_id}/cancel", response_model=RefundRead)
def cancel_refund(
    refund_id: uuid.UUID,
    payload: CancelRefundRequest | None = None,
    db: Session = Depends(get_db),
) -> RefundRead:
    payload = payload or CancelRefundRequest()
    return refund_service.cancel_refund(db, refund_id, payload.cancelled_by)
