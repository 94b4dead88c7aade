from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


RefundSourceType = Literal["credit", "payment"]
RefundMethod = Literal["interac", "cash", "cheque", "other"]
RefundStatus = Literal["pending", "completed", "cancelled"]


class RefundCreate(BaseModel):
    source_type: RefundSourceType
    source_id: UUID
    customer_id: UUID
    refund_amount: Decimal = Field(gt=Decimal("0"))
    refund_method: RefundMethod
    reason: str = Field(min_length=1)
    refund_date: date | None = None
    requested_by: str = Field(default="admin", min_length=1)


class ApproveRefundRequest(BaseModel):
    approved_by: str = Field(min_length=1)
    reference: str | None = Field(default=None, max_length=128)


class CancelRefundRequest(BaseModel):
    cancelled_by: str = Field(default="admin", min_length=1)


class RefundRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    source_type: RefundSourceType | str
    credit_id: UUID | None
    payment_record_id: UUID | None
    refund_amount: Decimal | str
    refund_method: RefundMethod | str
    refund_date: date | None
    reason: str
    reference: str | None
    status: RefundStatus | str
    requested_by: str
    approved_by: str | None
    approved_at: datetime | None
    cancelled_by: str | None
    cancelled_at: datetime | None
    created_at: datetime
