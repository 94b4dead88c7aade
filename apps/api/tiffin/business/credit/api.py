from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tiffin.business.credit.schemas import CreditAuditRead, CreditSummaryRead, CreditUsageRead, CustomerCreditRead
from tiffin.business.credit.service import credit_service
from tiffin.core.database import get_db


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/customers/{customer_id}", response_model=CreditSummaryRead)
def get_available_credit(customer_id: uuid.UUID, db: Session = Depends(get_db)) -> CreditSummaryRead:
    return credit_service.available_credit(db, customer_id)


@router.get("", response_model=list[CustomerCreditRead])
def list_credits(
    customer_id: uuid.UUID = Query(),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[CustomerCreditRead]:
    return credit_service.list_credits(db, customer_id, status)


@router.get("/{credit_id}", response_model=CustomerCreditRead)
def get_credit(credit_id: uuid.UUID, db: Session = Depends(get_db)) -> CustomerCreditRead:
    return credit_service.get_credit(db, credit_id)


@router.get("/{credit_id}/usages", response_model=list[CreditUsageRead])
def list_usages(credit_id: uuid.UUID, db: Session = Depends(get_db)) -> list[CreditUsageRead]:
    return credit_service.list_usages(db, credit_id)


@router.get("/{credit_id}/audit", response_model=CreditAuditRead)
def audit_credit(credit_id: uuid.UUID, db: Session = Depends(get_db)) -> CreditAuditRead:
    return credit_service.audit_credit(db, credit_id)
