from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tiffin.business.billing.schemas import (
    BillingActionRequest,
    BillingAuditRead,
    BusinessProfileRead,
    MonthlyBillingRead,
    OrderBillingRead,
    ReopenBillingRequest,
)
from tiffin.business.billing.service import billing_service
from tiffin.core.config import get_settings
from tiffin.core.database import get_db


router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/orders/{order_id}/months/{billing_month}/compute", response_model=OrderBillingRead)
def compute_order_billing(
    order_id: uuid.UUID,
    billing_month: str,
    actor: str = Query(default="admin", min_length=1),
    db: Session = Depends(get_db),
) -> OrderBillingRead:
    return billing_service.compute_order_billing(db, order_id, billing_month, actor)


@router.get("/order-billings", response_model=list[OrderBillingRead])
def list_order_billings(
    customer_id: uuid.UUID = Query(),
    billing_month: str = Query(),
    db: Session = Depends(get_db),
) -> list[OrderBillingRead]:
    return billing_service.list_order_billings(db, customer_id, billing_month)


@router.get("/order-billings/{billing_id}", response_model=OrderBillingRead)
def get_order_billing(billing_id: uuid.UUID, db: Session = Depends(get_db)) -> OrderBillingRead:
    return billing_service.get_order_billing(db, billing_id)


@router.post("/order-billings/{billing_id}/submit", response_model=OrderBillingRead)
def submit_billing(
    billing_id: uuid.UUID,
    payload: BillingActionRequest | None = None,
    db: Session = Depends(get_db),
) -> OrderBillingRead:
    payload = payload or BillingActionRequest()
    return billing_service.submit_billing(db, billing_id, payload.actor)


@router.post("/order-billings/{billing_id}/finalize", response_model=OrderBillingRead)
def finalize_billing(
    billing_id: uuid.UUID,
    payload: BillingActionRequest | None = None,
    db: Session = Depends(get_db),
) -> OrderBillingRead:
    payload = payload or BillingActionRequest()
    return billing_service.finalize_billing(db, billing_id, payload.actor)


@router.post("/order-billings/{billing_id}/reopen", response_model=OrderBillingRead)
def reopen_billing(billing_id: uuid.UUID, payload: ReopenBillingRequest, db: Session = Depends(get_db)) -> OrderBillingRead:
    return billing_service.reopen_billing(db, billing_id, payload.actor, payload.reason)


@router.get("/order-billings/{billing_id}/audit", response_model=BillingAuditRead)
def audit_order_billing(billing_id: uuid.UUID, db: Session = Depends(get_db)) -> BillingAuditRead:
    return billing_service.audit_order_billing(db, billing_id)


@router.get("/invoices", response_model=MonthlyBillingRead)
def find_invoice(
    customer_id: uuid.UUID = Query(),
    billing_month: str = Query(),
    db: Session = Depends(get_db),
) -> MonthlyBillingRead:
    return billing_service.find_invoice(db, customer_id, billing_month)


@router.get("/invoices/{invoice_id}", response_model=MonthlyBillingRead)
def get_invoice(invoice_id: uuid.UUID, db: Session = Depends(get_db)) -> MonthlyBillingRead:
    return billing_service.get_invoice(db, invoice_id)


@router.post("/invoices/{invoice_id}/approve", response_model=MonthlyBillingRead)
def approve_invoice(
    invoice_id: uuid.UUID,
    payload: BillingActionRequest | None = None,
    db: Session = Depends(get_db),
) -> MonthlyBillingRead:
    payload = payload or BillingActionRequest()
    return billing_service.approve_combined_invoice(db, invoice_id, payload.actor)


@router.post("/invoices/{invoice_id}/issue", response_model=MonthlyBillingRead)
def issue_invoice(
    invoice_id: uuid.UUID,
    payload: BillingActionRequest | None = None,
    db: Session = Depends(get_db),
) -> MonthlyBillingRead:
    payload = payload or BillingActionRequest()
    return billing_service.issue_combined_invoice(db, invoice_id, payload.actor)


@router.get("/customers/{customer_id}/unpaid", response_model=list[MonthlyBillingRead])
def list_unpaid(customer_id: uuid.UUID, db: Session = Depends(get_db)) -> list[MonthlyBillingRead]:
    return billing_service.list_unpaid(db, customer_id)


@router.get("/profile", response_model=BusinessProfileRead)
def business_profile() -> BusinessProfileRead:
    settings = get_settings()
    return BusinessProfileRead(
        company_name=settings.company_name,
        etransfer_email=settings.etransfer_email,
        currency=settings.currency,
    )
