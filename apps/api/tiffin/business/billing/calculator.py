"""Pure billing arithmetic for one order and one billing month.

Nothing here touches the database; the service layer feeds in snapshots and
persists the returned breakdown.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from tiffin.core.money import ZERO, to_money
from tiffin.core.periods import parse_billing_month


DELIVERED = "delivered"
ABSENT = "absent"
EXTRA = "extra"

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True, slots=True)
class OrderSnapshot:
    price: Decimal
    start_date: date
    end_date: date
    weekdays_only: bool = False
    selected_days: tuple[str, ...] = ()
    extra_price: Decimal | None = None


@dataclass(frozen=True, slots=True)
class BillingBreakdown:
    billing_month: str
    total_days: int
    applicable_days: int
    delivered_count: int
    absent_count: int
    extra_count: int
    per_tiffin_price: Decimal
    extra_unit_price: Decimal
    delivered_amount: Decimal
    absent_deduction: Decimal
    base_amount: Decimal
    extra_amount: Decimal
    total_amount: Decimal


def _days(first_day: date, last_day: date) -> Iterable[date]:
    current = first_day
    while current <= last_day:
        yield current
        current += timedelta(days=1)


def _delivery_weekdays(weekdays_only: bool, selected_days: Iterable[str]) -> frozenset[int]:
    if weekdays_only:
        return frozenset(range(5))
    wanted = frozenset(WEEKDAY_NAMES.index(name) for name in selected_days if name in WEEKDAY_NAMES)
    return wanted or frozenset(range(7))


def _count_delivery_days(first_day: date, last_day: date, weekdays: frozenset[int]) -> int:
    return sum(1 for day in _days(first_day, last_day) if day.weekday() in weekdays)


def count_total_days(billing_month: str, *, weekdays_only: bool, selected_days: Iterable[str] = ()) -> int:
    first_day, last_day = parse_billing_month(billing_month)
    return _count_delivery_days(first_day, last_day, _delivery_weekdays(weekdays_only, selected_days))


def count_applicable_days(order: OrderSnapshot, billing_month: str) -> int:
    """Delivery days of ``billing_month`` that fall inside the order's active window."""
    first_day, last_day = parse_billing_month(billing_month)
    window_start = max(first_day, order.start_date)
    window_end = min(last_day, order.end_date)
    weekdays = _delivery_weekdays(order.weekdays_only, order.selected_days)
    return _count_delivery_days(window_start, window_end, weekdays)


def calculate_order_billing(
    order: OrderSnapshot,
    billing_month: str,
    entries: Iterable[tuple[date, str]],
) -> BillingBreakdown:
    first_day, last_day = parse_billing_month(billing_month)
    window_start = max(first_day, order.start_date)
    window_end = min(last_day, order.end_date)

    counts = {DELIVERED: 0, ABSENT: 0, EXTRA: 0}
    for entry_date, status in entries:
        if entry_date < window_start or entry_date > window_end:
            continue
        if status in counts:
            counts[status] += 1

    total_days = count_total_days(billing_month, weekdays_only=order.weekdays_only, selected_days=order.selected_days)
    price = Decimal(order.price)
    per_tiffin_price = price / Decimal(total_days) if total_days else ZERO
    extra_unit_price = Decimal(order.extra_price) if order.extra_price is not None else per_tiffin_price

    # Every amount below stays unrounded until the final aggregation.
    delivered_amount = per_tiffin_price * counts[DELIVERED]
    absent_deduction = per_tiffin_price * counts[ABSENT]
    extra_amount = extra_unit_price * counts[EXTRA]
    base_amount = max(ZERO, delivered_amount - absent_deduction)
    total_amount = max(ZERO, delivered_amount - absent_deduction + extra_amount)

    return BillingBreakdown(
        billing_month=billing_month,
        total_days=total_days,
        applicable_days=count_applicable_days(order, billing_month),
        delivered_count=counts[DELIVERED],
        absent_count=counts[ABSENT],
        extra_count=counts[EXTRA],
        per_tiffin_price=per_tiffin_price,
        extra_unit_price=extra_unit_price,
        delivered_amount=delivered_amount,
        absent_deduction=absent_deduction,
        base_amount=to_money(base_amount),
        extra_amount=to_money(extra_amount),
        total_amount=to_money(total_amount),
    )


def combined_total(order_totals: Iterable[Decimal]) -> Decimal:
    return to_money(sum((Decimal(item) for item in order_totals), start=ZERO))


def can_approve(constituent_statuses: Iterable[str]) -> bool:
    statuses = list(constituent_statuses)
    return bool(statuses) and all(item == "finalized" for item in statuses)
