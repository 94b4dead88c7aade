from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


CreditStatus = Literal["available", "used", "refunded", "expired"]


class CustomerCreditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    source_payment_id: UUID | None
    original_amount: Decimal | str
    current_balance: Decimal | str
    refunded_amount: Decimal | str
    status: CreditStatus | str
    notes: str | None
    created_at: datetime
    updated_at: datetime


class CreditUsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    credit_id: UUID
    billing_id: UUID
    payment_record_id: UUID | None
    amount_used: Decimal | str
    reversed_at: datetime | None
    created_at: datetime


class CreditSummaryRead(BaseModel):
    customer_id: UUID
    total_available: Decimal | str
    credits: list[CustomerCreditRead] = Field(default_factory=list)


class CreditAuditRead(BaseModel):
    credit_id: UUID
    original_amount: Decimal | str
    used_amount: Decimal | str
    refunded_amount: Decimal | str
    current_balance: Decimal | str
    consistent: bool
