from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from tiffin import events
from tiffin.business.billing.repository import BillingRepository
from tiffin.business.calendar.models import CalendarEntry, TiffinOrder
from tiffin.business.calendar.repository import CalendarRepository
from tiffin.business.calendar.schemas import (
    CalendarEntryRead,
    CalendarEntryUpsert,
    CalendarMonthRead,
    TiffinOrderCreate,
    TiffinOrderRead,
)
from tiffin.core.errors import ImmutableBillingError, NotFoundError, ValidationError
from tiffin.core.periods import billing_month_of, parse_billing_month
from tiffin.core.transactions import run_in_transaction


logger = logging.getLogger("tiffin.calendar")


@dataclass(slots=True)
class CalendarService:
    """Minimal delivery-calendar store. Billing only ever reads from it."""

    repository: CalendarRepository = CalendarRepository()
    billing_repository: BillingRepository = BillingRepository()

    def create_order(self, session: Session, payload: TiffinOrderCreate) -> TiffinOrderRead:
        data = payload.model_dump(mode="python")
        data["selected_days"] = list(data.get("selected_days") or [])
        order = TiffinOrder(**data)

        def _create() -> TiffinOrder:
            session.add(order)
            session.flush()
            return order

        created = run_in_transaction(session, _create, name="calendar.create_order")
        return TiffinOrderRead.model_validate(created)

    def get_order(self, session: Session, order_id: uuid.UUID) -> TiffinOrderRead:
        return TiffinOrderRead.model_validate(self._get_order(session, order_id))

    def record_entry(
        self,
        session: Session,
        order_id: uuid.UUID,
        entry_date: date,
        payload: CalendarEntryUpsert,
    ) -> CalendarEntryRead:
        def _upsert() -> CalendarEntry:
            order = self._get_order(session, order_id)
            if entry_date < order.start_date or entry_date > order.end_date:
                raise ValidationError("entry_date is outside the order's active window")
            self._ensure_month_open(session, order, entry_date)
            entry = self.repository.get_entry(session, order_id, entry_date)
            if entry is None:
                entry = CalendarEntry(order_id=order_id, entry_date=entry_date, status=payload.status)
                session.add(entry)
            else:
                entry.status = payload.status
            session.flush()
            return entry

        entry = run_in_transaction(session, _upsert, name="calendar.record_entry")
        self._publish_change(session, order_id, entry_date)
        return CalendarEntryRead.model_validate(entry)

    def clear_entry(self, session: Session, order_id: uuid.UUID, entry_date: date) -> None:
        def _clear() -> bool:
            order = self._get_order(session, order_id)
            entry = self.repository.get_entry(session, order_id, entry_date)
            if entry is None:
                return False
            self._ensure_month_open(session, order, entry_date)
            session.delete(entry)
            return True

        if run_in_transaction(session, _clear, name="calendar.clear_entry"):
            self._publish_change(session, order_id, entry_date)

    def get_month(self, session: Session, order_id: uuid.UUID, billing_month: str) -> CalendarMonthRead:
        first_day, last_day = parse_billing_month(billing_month)
        self._get_order(session, order_id)
        entries = self.repository.list_entries(session, order_id, first_day, last_day)
        return CalendarMonthRead(
            order_id=order_id,
            billing_month=billing_month,
            entries=[CalendarEntryRead.model_validate(item) for item in entries],
        )

    def _get_order(self, session: Session, order_id: uuid.UUID) -> TiffinOrder:
        order = self.repository.get_order(session, order_id)
        if order is None:
            raise NotFoundError("order not found")
        return order

    def _ensure_month_open(self, session: Session, order: TiffinOrder, entry_date: date) -> None:
        billing_month = billing_month_of(entry_date)
        reason = self.billing_repository.frozen_month_reason(session, order.id, order.customer_id, billing_month)
        if reason is not None:
            raise ImmutableBillingError(f"{billing_month} is closed for calendar edits: {reason}; reopen the billing first")

    def _publish_change(self, session: Session, order_id: uuid.UUID, entry_date: date) -> None:
        order = self._get_order(session, order_id)
        billing_month = billing_month_of(entry_date)
        logger.info(
            "calendar.entry_changed",
            extra={"order_id": str(order_id), "billing_month": billing_month},
        )
        events.publish(
            {
                "event_type": "calendar.entry.changed",
                "order_id": str(order_id),
                "customer_id": str(order.customer_id),
                "billing_month": billing_month,
            }
        )


calendar_service = CalendarService()
