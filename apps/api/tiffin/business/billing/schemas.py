from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


OrderBillingStatus = Literal["calculating", "pending", "finalized", "approved", "invoiced", "paid"]
MonthlyBillingStatus = Literal["calculating", "pending", "finalized", "invoiced", "paid"]
InvoicePaymentStatus = Literal["unpaid", "partial", "paid"]


class OrderBillingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    customer_id: UUID
    monthly_billing_id: UUID | None
    billing_month: str
    total_days: int
    applicable_days: int
    delivered_count: int
    absent_count: int
    extra_count: int
    per_tiffin_price: Decimal | str
    base_amount: Decimal | str
    extra_amount: Decimal | str
    total_amount: Decimal | str
    status: OrderBillingStatus | str
    calculated_at: datetime | None
    finalized_at: datetime | None
    finalized_by: str | None
    created_at: datetime
    updated_at: datetime


class MonthlyBillingRead(BaseModel):
    id: UUID
    customer_id: UUID
    billing_month: str
    total_amount: Decimal | str
    amount_paid: Decimal | str
    credit_applied: Decimal | str
    balance_due: Decimal | str
    status: MonthlyBillingStatus | str
    payment_status: InvoicePaymentStatus | str
    can_approve: bool
    finalized_at: datetime | None
    finalized_by: str | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime
    orders: list[OrderBillingRead] = Field(default_factory=list)


class BillingActionRequest(BaseModel):
    actor: str = Field(default="admin", min_length=1)


class ReopenBillingRequest(BillingActionRequest):
    reason: str = Field(min_length=1)


class BillingAuditRead(BaseModel):
    billing_id: UUID
    applicable_days: int
    delivered_count: int
    absent_count: int
    extra_count: int
    consistent: bool


class BusinessProfileRead(BaseModel):
    company_name: str
    etransfer_email: str
    currency: str
