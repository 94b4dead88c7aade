from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from tiffin.business.calendar.models import CalendarEntry, TiffinOrder


class CalendarRepository:
    def get_order(self, session: Session, order_id: uuid.UUID) -> TiffinOrder | None:
        return session.get(TiffinOrder, order_id)

    def get_entry(self, session: Session, order_id: uuid.UUID, entry_date: date) -> CalendarEntry | None:
        return session.scalar(
            select(CalendarEntry).where(CalendarEntry.order_id == order_id, CalendarEntry.entry_date == entry_date)
        )

    def list_entries(self, session: Session, order_id: uuid.UUID, first_day: date, last_day: date) -> list[CalendarEntry]:
        stmt = (
            select(CalendarEntry)
            .where(
                CalendarEntry.order_id == order_id,
                CalendarEntry.entry_date >= first_day,
                CalendarEntry.entry_date <= last_day,
            )
            .order_by(CalendarEntry.entry_date.asc())
        )
        return list(session.scalars(stmt).all())

    def list_customer_orders(self, session: Session, customer_id: uuid.UUID, first_day: date, last_day: date) -> list[TiffinOrder]:
        stmt = (
            select(TiffinOrder)
            .where(
                TiffinOrder.customer_id == customer_id,
                TiffinOrder.start_date <= last_day,
                TiffinOrder.end_date >= first_day,
            )
            .order_by(TiffinOrder.start_date.asc(), TiffinOrder.id.asc())
        )
        return list(session.scalars(stmt).all())
