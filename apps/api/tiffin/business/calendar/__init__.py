from tiffin.business.calendar.api import router
from tiffin.business.calendar.models import CalendarEntry, TiffinOrder
from tiffin.business.calendar.schemas import (
    CalendarEntryRead,
    CalendarEntryUpsert,
    CalendarMonthRead,
    TiffinOrderCreate,
    TiffinOrderRead,
)
from tiffin.business.calendar.service import CalendarService, calendar_service

__all__ = [
    "router",
    "CalendarEntry",
    "TiffinOrder",
    "CalendarEntryRead",
    "CalendarEntryUpsert",
    "CalendarMonthRead",
    "TiffinOrderCreate",
    "TiffinOrderRead",
    "CalendarService",
    "calendar_service",
]
