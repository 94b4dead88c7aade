from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


EntryStatus = Literal["delivered", "absent", "extra"]
DayName = Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class TiffinOrderCreate(BaseModel):
    customer_id: UUID
    meal_plan_name: str | None = None
    price: Decimal = Field(ge=Decimal("0"))
    extra_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    start_date: date
    end_date: date
    weekdays_only: bool = False
    selected_days: list[DayName] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self) -> TiffinOrderCreate:
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TiffinOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    meal_plan_name: str | None
    price: Decimal | str
    extra_price: Decimal | str | None
    start_date: date
    end_date: date
    weekdays_only: bool
    selected_days: list[str]
    created_at: datetime


class CalendarEntryUpsert(BaseModel):
    status: EntryStatus


class CalendarEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    entry_date: date
    status: EntryStatus | str
    updated_at: datetime


class CalendarMonthRead(BaseModel):
    order_id: UUID
    billing_month: str
    entries: list[CalendarEntryRead] = Field(default_factory=list)
