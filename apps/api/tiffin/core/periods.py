from __future__ import annotations

import calendar
import re
from datetime import date

from tiffin.core.errors import ValidationError


_BILLING_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def parse_billing_month(billing_month: str) -> tuple[date, date]:
    """Return the first and last day of a ``YYYY-MM`` billing month."""
    if not _BILLING_MONTH_RE.match(billing_month or ""):
        raise ValidationError("billing_month must be formatted YYYY-MM")
    year, month = (int(part) for part in billing_month.split("-"))
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def billing_month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"
