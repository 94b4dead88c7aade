from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tiffin import audit, events
from tiffin.business.billing.service import BillingService, billing_service
from tiffin.business.calendar.models import CalendarEntry
from tiffin.business.calendar.schemas import TiffinOrderCreate
from tiffin.business.calendar.service import CalendarService
from tiffin.business.credit.models import CreditUsage
from tiffin.business.credit.service import CreditService, credit_service
from tiffin.business.payments.schemas import AllocationEntry, PaymentCreate
from tiffin.business.payments.service import PaymentService, payment_service, plan_auto_allocation
from tiffin.business.refunds.service import RefundService, refund_service
from tiffin.core.config import get_settings
from tiffin.core.database import Base
from tiffin.core.errors import (
    CreditAlreadyConsumedError,
    InsufficientCreditError,
    NotFoundError,
    OverAllocationError,
    ValidationError,
)
from tiffin.core.periods import parse_billing_month


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None, None, None]:
    get_settings.cache_clear()
    events.published_events.clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


def _seed_invoice(session: Session, customer_id: uuid.UUID, billing_month: str, price: str, *, approve: bool = True) -> uuid.UUID:
    """Bill a full month of deliveries for ``price`` and return the combined invoice id."""
    first_day, last_day = parse_billing_month(billing_month)
    order = CalendarService().create_order(
        session,
        TiffinOrderCreate(customer_id=customer_id, price=Decimal(price), start_date=first_day, end_date=last_day),
    )
    day = first_day
    while day <= last_day:
        session.add(CalendarEntry(order_id=order.id, entry_date=day, status="delivered"))
        day += timedelta(days=1)
    session.commit()

    billing_service = BillingService()
    billing = billing_service.compute_order_billing(session, order.id, billing_month)
    billing_service.finalize_billing(session, billing.id, "admin")
    invoice = billing_service.find_invoice(session, customer_id, billing_month)
    if approve:
        billing_service.approve_combined_invoice(session, invoice.id, "admin")
    return invoice.id


def _payment(customer_id: uuid.UUID, amount: str, allocations: list[AllocationEntry] | None = None) -> PaymentCreate:
    return PaymentCreate(
        customer_id=customer_id,
        amount=Decimal(amount),
        payment_date=date(2026, 3, 5),
        source="interac",
        reference="ETR-1001",
        allocations=allocations,
    )


def _invoice(session: Session, invoice_id: uuid.UUID):
    return BillingService().get_invoice(session, invoice_id)


def test_auto_allocation_pays_oldest_invoice_first(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    february = _seed_invoice(db_session, customer_id, "2026-02", "100")

    payment = service.create_payment(db_session, _payment(customer_id, "200", allocations=[]))

    assert payment.allocation_status == "partial"
    assert Decimal(payment.total_allocated) == Decimal("200.00")
    assert Decimal(payment.excess_amount) == Decimal("0.00")
    assert [(item.billing_id, Decimal(item.allocated_amount)) for item in payment.allocations] == [
        (january, Decimal("150.00")),
        (february, Decimal("50.00")),
    ]
    assert [item.resulting_status for item in payment.allocations] == ["paid", "partial"]

    jan = _invoice(db_session, january)
    assert jan.status == "paid"
    assert jan.payment_status == "paid"
    assert {item.status for item in jan.orders} == {"paid"}

    feb = _invoice(db_session, february)
    assert feb.status == "finalized"
    assert feb.payment_status == "partial"
    assert Decimal(feb.balance_due) == Decimal("50.00")

    assert CreditService().list_credits(db_session, customer_id) == []
    event_types = [event["event_type"] for event in events.published_events]
    assert event_types[-2:] == ["payment.created", "payment.allocated"]


def test_excess_payment_becomes_customer_credit(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    february = _seed_invoice(db_session, customer_id, "2026-02", "100")

    payment = service.create_payment(db_session, _payment(customer_id, "300", allocations=[]))

    assert payment.allocation_status == "has_excess"
    assert Decimal(payment.excess_amount) == Decimal("50.00")
    assert _invoice(db_session, january).payment_status == "paid"
    assert _invoice(db_session, february).payment_status == "paid"

    credits = CreditService().list_credits(db_session, customer_id)
    assert len(credits) == 1
    assert Decimal(credits[0].original_amount) == Decimal("50.00")
    assert Decimal(credits[0].current_balance) == Decimal("50.00")
    assert credits[0].status == "available"
    assert credits[0].source_payment_id == payment.id
    assert credits[0].notes == "Auto-created from excess payment"
    assert events.published_events[-1]["event_type"] == "credit.created"


def test_payment_without_invoices_is_all_credit(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()

    payment = service.create_payment(db_session, _payment(customer_id, "80", allocations=[]))

    assert payment.allocation_status == "has_excess"
    assert payment.allocations == []
    summary = CreditService().available_credit(db_session, customer_id)
    assert Decimal(summary.total_available) == Decimal("80.00")


def test_zero_payment_settles_invoice_from_credit_alone(db_session: Session) -> None:
    service = PaymentService()
    credits = CreditService()
    customer_id = uuid.uuid4()
    _seed_invoice(db_session, customer_id, "2026-01", "150")
    _seed_invoice(db_session, customer_id, "2026-02", "100")
    service.create_payment(db_session, _payment(customer_id, "300", allocations=[]))
    march = _seed_invoice(db_session, customer_id, "2026-03", "40")

    payment = service.create_payment(
        db_session,
        _payment(customer_id, "0", allocations=[AllocationEntry(invoice_id=march, amount=Decimal("0"), credit_amount=Decimal("40"))]),
    )

    assert payment.allocation_status == "fully_allocated"
    assert Decimal(payment.total_allocated) == Decimal("0.00")
    assert Decimal(payment.allocations[0].credit_amount_used) == Decimal("40.00")

    invoice = _invoice(db_session, march)
    assert invoice.payment_status == "paid"
    assert Decimal(invoice.credit_applied) == Decimal("40.00")
    assert Decimal(invoice.amount_paid) == Decimal("0.00")

    [credit] = credits.list_credits(db_session, customer_id)
    assert Decimal(credit.current_balance) == Decimal("10.00")
    assert credit.status == "available"
    usages = credits.list_usages(db_session, credit.id)
    assert [(item.billing_id, Decimal(item.amount_used)) for item in usages] == [(march, Decimal("40.00"))]
    assert credits.audit_credit(db_session, credit.id).consistent is True


def test_deleting_payment_whose_credit_was_spent_fails_without_changes(db_session: Session) -> None:
    service = PaymentService()
    credits = CreditService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    _seed_invoice(db_session, customer_id, "2026-02", "100")
    original = service.create_payment(db_session, _payment(customer_id, "300", allocations=[]))
    march = _seed_invoice(db_session, customer_id, "2026-03", "40")
    service.create_payment(
        db_session,
        _payment(customer_id, "0", allocations=[AllocationEntry(invoice_id=march, credit_amount=Decimal("40"))]),
    )

    with pytest.raises(CreditAlreadyConsumedError) as exc_info:
        service.delete_payment(db_session, original.id, "entered twice")
    assert exc_info.value.status_code == 500

    survivor = service.get_payment(db_session, original.id)
    assert survivor.deleted_at is None
    assert all(item.reversed_at is None for item in survivor.allocations)
    assert _invoice(db_session, january).payment_status == "paid"
    [credit] = credits.list_credits(db_session, customer_id)
    assert Decimal(credit.current_balance) == Decimal("10.00")
    assert credit.status == "available"


def test_delete_then_replay_reproduces_the_same_allocation(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    february = _seed_invoice(db_session, customer_id, "2026-02", "100")

    first = service.create_payment(db_session, _payment(customer_id, "200", allocations=[]))
    deleted = service.delete_payment(db_session, first.id, "bounced transfer", deleted_by="manager")

    assert deleted.deleted_at is not None
    assert deleted.deleted_by == "manager"
    assert deleted.delete_reason == "bounced transfer"
    assert all(item.reversed_at is not None for item in deleted.allocations)
    with pytest.raises(NotFoundError):
        service.get_payment(db_session, first.id)
    assert service.list_payments(db_session, customer_id) == []
    assert [item.id for item in service.list_payments(db_session, customer_id, include_deleted=True)] == [first.id]

    jan = _invoice(db_session, january)
    assert jan.status == "finalized"
    assert jan.payment_status == "unpaid"
    assert {item.status for item in jan.orders} == {"approved"}
    assert Decimal(jan.balance_due) == Decimal("150.00")
    assert Decimal(_invoice(db_session, february).balance_due) == Decimal("100.00")

    second = service.create_payment(db_session, _payment(customer_id, "200", allocations=[]))
    assert [(item.billing_id, item.allocated_amount, item.resulting_status) for item in second.allocations] == [
        (item.billing_id, item.allocated_amount, item.resulting_status) for item in first.allocations
    ]

    trail = audit.list_entries(db_session, "payment_record", first.id)
    assert trail[-1].action == "deleted"
    assert trail[-1].reason == "bounced transfer"
    assert "payment.deleted" in [event["event_type"] for event in events.published_events]


def test_deleting_payment_restores_spent_credit_and_expires_its_own_credit(db_session: Session) -> None:
    service = PaymentService()
    credits = CreditService()
    customer_id = uuid.uuid4()
    _seed_invoice(db_session, customer_id, "2026-01", "150")
    _seed_invoice(db_session, customer_id, "2026-02", "100")
    excess = service.create_payment(db_session, _payment(customer_id, "300", allocations=[]))
    march = _seed_invoice(db_session, customer_id, "2026-03", "40")
    spender = service.create_payment(
        db_session,
        _payment(customer_id, "0", allocations=[AllocationEntry(invoice_id=march, credit_amount=Decimal("40"))]),
    )

    service.delete_payment(db_session, spender.id, "wrong invoice")

    [credit] = credits.list_credits(db_session, customer_id)
    assert Decimal(credit.current_balance) == Decimal("50.00")
    assert credit.status == "available"
    assert all(item.reversed_at is not None for item in db_session.scalars(select(CreditUsage)).all())
    invoice = _invoice(db_session, march)
    assert invoice.payment_status == "unpaid"
    assert invoice.status == "finalized"
    assert credits.audit_credit(db_session, credit.id).consistent is True

    service.delete_payment(db_session, excess.id, "duplicate entry")

    [expired] = credits.list_credits(db_session, customer_id)
    assert expired.status == "expired"
    assert Decimal(credits.available_credit(db_session, customer_id).total_available) == Decimal("0.00")


def test_delete_requires_reason(db_session: Session) -> None:
    service = PaymentService()
    payment = service.create_payment(db_session, _payment(uuid.uuid4(), "10"))

    with pytest.raises(ValidationError):
        service.delete_payment(db_session, payment.id, "  ")


def test_manual_allocation_rejects_over_allocation_atomically(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    february = _seed_invoice(db_session, customer_id, "2026-02", "100")

    with pytest.raises(OverAllocationError):
        service.create_payment(
            db_session,
            _payment(customer_id, "200", allocations=[AllocationEntry(invoice_id=february, amount=Decimal("120"))]),
        )

    with pytest.raises(OverAllocationError):
        service.create_payment(
            db_session,
            _payment(
                customer_id,
                "200",
                allocations=[
                    AllocationEntry(invoice_id=january, amount=Decimal("150")),
                    AllocationEntry(invoice_id=february, amount=Decimal("60")),
                ],
            ),
        )

    assert service.list_payments(db_session, customer_id, include_deleted=True) == []
    assert Decimal(_invoice(db_session, january).balance_due) == Decimal("150.00")
    assert Decimal(_invoice(db_session, february).balance_due) == Decimal("100.00")


def test_manual_allocation_validates_each_entry(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    unapproved = _seed_invoice(db_session, customer_id, "2026-02", "100", approve=False)
    other = _seed_invoice(db_session, uuid.uuid4(), "2026-01", "90")
    payment = service.create_payment(db_session, _payment(customer_id, "100"))

    with pytest.raises(ValidationError):
        service.allocate_payment(
            db_session,
            payment.id,
            [AllocationEntry(invoice_id=january, amount=Decimal("10")), AllocationEntry(invoice_id=january, amount=Decimal("10"))],
        )
    with pytest.raises(ValidationError):
        service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=unapproved, amount=Decimal("10"))])
    with pytest.raises(ValidationError):
        service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=other, amount=Decimal("10"))])
    with pytest.raises(ValidationError):
        service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=january)])
    with pytest.raises(NotFoundError):
        service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=uuid.uuid4(), amount=Decimal("10"))])
    with pytest.raises(InsufficientCreditError):
        service.allocate_payment(
            db_session,
            payment.id,
            [AllocationEntry(invoice_id=january, amount=Decimal("10"), credit_amount=Decimal("5"))],
        )
    with pytest.raises(ValidationError):
        service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=january, amount=Decimal("10.005"))])

    assert service.get_payment(db_session, payment.id).allocation_status == "unallocated"


def test_payment_is_allocated_only_once(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    payment = service.create_payment(db_session, _payment(customer_id, "100"))
    assert payment.allocation_status == "unallocated"

    result = service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=january, amount=Decimal("100"))])
    assert result.mode == "manual"
    assert result.allocation_status == "partial"
    assert Decimal(result.total_allocated) == Decimal("100.00")

    with pytest.raises(ValidationError):
        service.allocate_payment(db_session, payment.id)
    assert len(service.list_allocations(db_session, payment.id)) == 1


def test_manual_allocation_may_leave_excess_as_credit(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    payment = service.create_payment(db_session, _payment(customer_id, "100"))

    result = service.allocate_payment(db_session, payment.id, [AllocationEntry(invoice_id=january, amount=Decimal("60"))])

    assert result.allocation_status == "has_excess"
    assert Decimal(result.excess_amount) == Decimal("40.00")
    assert result.credit_id is not None
    assert Decimal(CreditService().get_credit(db_session, result.credit_id).current_balance) == Decimal("40.00")


def test_auto_select_preview_respects_cap_and_writes_nothing(db_session: Session) -> None:
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    february = _seed_invoice(db_session, customer_id, "2026-02", "100")

    preview = service.auto_select_invoices(db_session, customer_id, Decimal("200"))
    assert [(item.invoice_id, Decimal(item.amount)) for item in preview.selections] == [
        (january, Decimal("150.00")),
        (february, Decimal("50.00")),
    ]
    assert Decimal(preview.excess_amount) == Decimal("0.00")

    capped = service.auto_select_invoices(db_session, customer_id, Decimal("200"), max_invoices=1)
    assert [item.invoice_id for item in capped.selections] == [january]
    assert Decimal(capped.total_selected) == Decimal("150.00")
    assert Decimal(capped.excess_amount) == Decimal("50.00")

    assert Decimal(_invoice(db_session, january).balance_due) == Decimal("150.00")

    with pytest.raises(ValidationError):
        service.auto_select_invoices(db_session, customer_id, Decimal("0"))
    with pytest.raises(ValidationError):
        service.auto_select_invoices(db_session, customer_id, Decimal("10"), max_invoices=0)


def test_configured_cap_applies_to_preview_and_automatic_allocation(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTO_SELECT_MAX_INVOICES", "1")
    get_settings.cache_clear()
    service = PaymentService()
    customer_id = uuid.uuid4()
    january = _seed_invoice(db_session, customer_id, "2026-01", "150")
    _seed_invoice(db_session, customer_id, "2026-02", "100")

    preview = service.auto_select_invoices(db_session, customer_id, Decimal("200"))

    assert [item.invoice_id for item in preview.selections] == [january]

    payment = service.create_payment(db_session, _payment(customer_id, "200"))
    result = service.allocate_payment(db_session, payment.id)

    assert [(item.billing_id, Decimal(item.allocated_amount)) for item in result.allocations] == [
        (item.invoice_id, Decimal(item.amount)) for item in preview.selections
    ]
    assert Decimal(result.excess_amount) == Decimal(preview.excess_amount) == Decimal("50.00")
    assert result.allocation_status == "has_excess"


def test_plan_auto_allocation_is_pure_and_ordered() -> None:
    class _Invoice:
        def __init__(self, billing_month: str, balance: str) -> None:
            self.id = uuid.uuid4()
            self.billing_month = billing_month
            self.balance_due = Decimal(balance)

    invoices = [_Invoice("2026-01", "150.00"), _Invoice("2026-02", "0.00"), _Invoice("2026-03", "100.00")]

    plan = plan_auto_allocation(invoices, Decimal("175.00"))

    assert [(item.invoice_id, item.amount) for item in plan] == [
        (invoices[0].id, Decimal("150.00")),
        (invoices[2].id, Decimal("25.00")),
    ]
    assert plan_auto_allocation(invoices, Decimal("175.00")) == plan
    assert plan_auto_allocation(invoices, Decimal("0")) == []


def test_services_share_the_module_level_ledgers() -> None:
    assert payment_service.billing is billing_service
    assert payment_service.credits is credit_service
    assert refund_service.credits is credit_service
    assert PaymentService().credits is RefundService().credits
