from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


PaymentSource = Literal["cash", "interac"]
AllocationStatus = Literal["unallocated", "partial", "fully_allocated", "has_excess"]
AllocationMode = Literal["auto", "manual"]


class AllocationEntry(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    credit_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class PaymentCreate(BaseModel):
    customer_id: UUID
    amount: Decimal = Field(ge=Decimal("0"))
    payment_date: date
    source: PaymentSource
    reference: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    created_by: str = Field(default="admin", min_length=1)
    allocations: list[AllocationEntry] | None = None


class AllocatePaymentRequest(BaseModel):
    allocations: list[AllocationEntry] | None = None
    actor: str = Field(default="admin", min_length=1)


class DeletePaymentRequest(BaseModel):
    reason: str = Field(min_length=1)
    deleted_by: str = Field(default="admin", min_length=1)


class PaymentAllocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_record_id: UUID
    billing_id: UUID
    allocation_order: int
    allocated_amount: Decimal | str
    credit_amount_used: Decimal | str
    balance_before: Decimal | str
    balance_after: Decimal | str
    resulting_status: str
    reversed_at: datetime | None
    created_at: datetime


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    amount: Decimal | str
    payment_date: date
    source: PaymentSource | str
    reference: str | None
    notes: str | None
    allocation_status: AllocationStatus | str
    total_allocated: Decimal | str
    excess_amount: Decimal | str
    created_by: str | None
    deleted_at: datetime | None
    deleted_by: str | None
    delete_reason: str | None
    created_at: datetime
    allocations: list[PaymentAllocationRead] = Field(default_factory=list)


class AllocationResult(BaseModel):
    payment_id: UUID
    mode: AllocationMode
    allocation_status: AllocationStatus | str
    total_allocated: Decimal | str
    excess_amount: Decimal | str
    credit_applied: Decimal | str
    credit_id: UUID | None = None
    allocations: list[PaymentAllocationRead] = Field(default_factory=list)


class AutoSelection(BaseModel):
    invoice_id: UUID
    billing_month: str
    balance_due: Decimal | str
    amount: Decimal | str


class AutoSelectRead(BaseModel):
    customer_id: UUID
    payment_amount: Decimal | str
    selections: list[AutoSelection] = Field(default_factory=list)
    total_selected: Decimal | str
    excess_amount: Decimal | str
