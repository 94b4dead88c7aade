from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from tiffin.business.calendar.schemas import (
    CalendarEntryRead,
    CalendarEntryUpsert,
    CalendarMonthRead,
    TiffinOrderCreate,
    TiffinOrderRead,
)
from tiffin.business.calendar.service import calendar_service
from tiffin.core.database import get_db


router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.post("/orders", response_model=TiffinOrderRead, status_code=status.HTTP_201_CREATED)
def create_order(payload: TiffinOrderCreate, db: Session = Depends(get_db)) -> TiffinOrderRead:
    return calendar_service.create_order(db, payload)


@router.get("/orders/{order_id}", response_model=TiffinOrderRead)
def get_order(order_id: uuid.UUID, db: Session = Depends(get_db)) -> TiffinOrderRead:
    return calendar_service.get_order(db, order_id)


@router.put("/orders/{order_id}/entries/{entry_date}", response_model=CalendarEntryRead)
def record_entry(
    order_id: uuid.UUID,
    entry_date: date,
    payload: CalendarEntryUpsert,
    db: Session = Depends(get_db),
) -> CalendarEntryRead:
    return calendar_service.record_entry(db, order_id, entry_date, payload)


@router.delete("/orders/{order_id}/entries/{entry_date}", status_code=status.HTTP_204_NO_CONTENT)
def clear_entry(order_id: uuid.UUID, entry_date: date, db: Session = Depends(get_db)) -> Response:
    calendar_service.clear_entry(db, order_id, entry_date)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/orders/{order_id}/months/{billing_month}", response_model=CalendarMonthRead)
def get_month(order_id: uuid.UUID, billing_month: str, db: Session = Depends(get_db)) -> CalendarMonthRead:
    return calendar_service.get_month(db, order_id, billing_month)
