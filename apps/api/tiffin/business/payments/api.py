from __future__ import annotations

import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from tiffin.business.payments.schemas import (
    AllocatePaymentRequest,
    AllocationResult,
    AutoSelectRead,
    DeletePaymentRequest,
    PaymentAllocationRead,
    PaymentCreate,
    PaymentRead,
)
from tiffin.business.payments.service import payment_service
from tiffin.core.database import get_db


router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/auto-select", response_model=AutoSelectRead)
def auto_select_invoices(
    customer_id: uuid.UUID = Query(),
    payment_amount: Decimal = Query(),
    max_invoices: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> AutoSelectRead:
    return payment_service.auto_select_invoices(db, customer_id, payment_amount, max_invoices)


@router.post("", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def create_payment(payload: PaymentCreate, db: Session = Depends(get_db)) -> PaymentRead:
    return payment_service.create_payment(db, payload)


@router.get("", response_model=list[PaymentRead])
def list_payments(
    customer_id: uuid.UUID = Query(),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[PaymentRead]:
    return payment_service.list_payments(db, customer_id, include_deleted=include_deleted)


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(
    payment_id: uuid.UUID,
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> PaymentRead:
    return payment_service.get_payment(db, payment_id, include_deleted=include_deleted)


@router.get("/{payment_id}/allocations", response_model=list[PaymentAllocationRead])
def list_allocations(payment_id: uuid.UUID, db: Session = Depends(get_db)) -> list[PaymentAllocationRead]:
    return payment_service.list_allocations(db, payment_id)


@router.post("/{payment_id}/allocate", response_model=AllocationResult)
def allocate_payment(
    payment_id: uuid.UUID,
    payload: AllocatePaymentRequest | None = None,
    db: Session = Depends(get_db),
) -> AllocationResult:
    payload = payload or AllocatePaymentRequest()
    return payment_service.allocate_payment(db, payment_id, payload.allocations, payload.actor)


@router.delete("/{payment_id}", response_model=PaymentRead)
def delete_payment(payment_id: uuid.UUID, payload: DeletePaymentRequest, db: Session = Depends(get_db)) -> PaymentRead:
    return payment_service.delete_payment(db, payment_id, payload.reason, payload.deleted_by)
