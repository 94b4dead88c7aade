from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tiffin import audit, events
from tiffin.business.billing.service import BillingService
from tiffin.business.calendar.models import CalendarEntry
from tiffin.business.calendar.schemas import TiffinOrderCreate
from tiffin.business.calendar.service import CalendarService
from tiffin.business.credit.models import CustomerCredit
from tiffin.business.credit.service import CreditService
from tiffin.business.payments.schemas import AllocationEntry, PaymentCreate
from tiffin.business.payments.service import PaymentService
from tiffin.business.refunds.schemas import RefundCreate
from tiffin.business.refunds.service import RefundService
from tiffin.core.config import get_settings
from tiffin.core.database import Base
from tiffin.core.errors import (
    CreditBalanceIntegrityError,
    InsufficientCreditError,
    InvalidTransitionError,
    NotFoundError,
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


def _seed_invoice(session: Session, customer_id: uuid.UUID, billing_month: str, price: str) -> uuid.UUID:
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
    billing_service.approve_combined_invoice(session, invoice.id, "admin")
    return invoice.id


def _credit_from_overpayment(session: Session, customer_id: uuid.UUID, amount: str = "50"):
    payment = PaymentService().create_payment(
        session,
        PaymentCreate(
            customer_id=customer_id,
            amount=Decimal(amount),
            payment_date=date(2026, 3, 1),
            source="cash",
            allocations=[],
        ),
    )
    [credit] = CreditService().list_credits(session, customer_id)
    return payment, credit


def _refund(customer_id: uuid.UUID, source_id: uuid.UUID, amount: str, *, source_type: str = "credit") -> RefundCreate:
    return RefundCreate(
        source_type=source_type,
        source_id=source_id,
        customer_id=customer_id,
        refund_amount=Decimal(amount),
        refund_method="interac",
        reason="customer moved away",
    )


def test_approved_refund_drains_remaining_credit(db_session: Session) -> None:
    service = RefundService()
    credits = CreditService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)
    invoice_id = _seed_invoice(db_session, customer_id, "2026-03", "40")
    PaymentService().create_payment(
        db_session,
        PaymentCreate(
            customer_id=customer_id,
            amount=Decimal("0"),
            payment_date=date(2026, 4, 1),
            source="cash",
            allocations=[AllocationEntry(invoice_id=invoice_id, credit_amount=Decimal("40"))],
        ),
    )

    requested = service.request_refund(db_session, _refund(customer_id, credit.id, "10"))
    assert requested.status == "pending"
    assert requested.credit_id == credit.id
    assert Decimal(credits.get_credit(db_session, credit.id).current_balance) == Decimal("10.00")

    approved = service.approve_refund(db_session, requested.id, "manager", reference="INTERAC-778")

    assert approved.status == "completed"
    assert approved.approved_by == "manager"
    assert approved.approved_at is not None
    assert approved.reference == "INTERAC-778"
    after = credits.get_credit(db_session, credit.id)
    assert Decimal(after.current_balance) == Decimal("0.00")
    assert Decimal(after.refunded_amount) == Decimal("10.00")
    assert after.status == "refunded"

    report = credits.audit_credit(db_session, credit.id)
    assert report.consistent is True
    assert Decimal(report.used_amount) == Decimal("40.00")
    assert [event["event_type"] for event in events.published_events][-1] == "refund.completed"
    assert [entry.action for entry in audit.list_entries(db_session, "refund_request", requested.id)] == ["requested", "approved"]


def test_refund_request_cannot_exceed_credit_balance(db_session: Session) -> None:
    service = RefundService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)

    with pytest.raises(InsufficientCreditError):
        service.request_refund(db_session, _refund(customer_id, credit.id, "50.01"))
    with pytest.raises(ValidationError):
        service.request_refund(db_session, _refund(uuid.uuid4(), credit.id, "5"))
    with pytest.raises(NotFoundError):
        service.request_refund(db_session, _refund(customer_id, uuid.uuid4(), "5"))

    assert service.list_refunds(db_session, customer_id) == []


def test_approval_rechecks_balance_spent_since_request(db_session: Session) -> None:
    service = RefundService()
    credits = CreditService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)
    requested = service.request_refund(db_session, _refund(customer_id, credit.id, "30"))

    invoice_id = _seed_invoice(db_session, customer_id, "2026-03", "40")
    PaymentService().create_payment(
        db_session,
        PaymentCreate(
            customer_id=customer_id,
            amount=Decimal("0"),
            payment_date=date(2026, 4, 1),
            source="cash",
            allocations=[AllocationEntry(invoice_id=invoice_id, credit_amount=Decimal("40"))],
        ),
    )

    with pytest.raises(InsufficientCreditError):
        service.approve_refund(db_session, requested.id, "manager")

    assert service.get_refund(db_session, requested.id).status == "pending"
    assert Decimal(credits.get_credit(db_session, credit.id).current_balance) == Decimal("10.00")


def test_cancel_leaves_credit_untouched_and_blocks_approval(db_session: Session) -> None:
    service = RefundService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)
    requested = service.request_refund(db_session, _refund(customer_id, credit.id, "20"))

    cancelled = service.cancel_refund(db_session, requested.id, "support")

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "support"
    assert Decimal(CreditService().get_credit(db_session, credit.id).current_balance) == Decimal("50.00")
    with pytest.raises(InvalidTransitionError):
        service.approve_refund(db_session, requested.id, "manager")
    with pytest.raises(InvalidTransitionError):
        service.cancel_refund(db_session, requested.id)


def test_completed_refund_cannot_be_approved_twice(db_session: Session) -> None:
    service = RefundService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)
    requested = service.request_refund(db_session, _refund(customer_id, credit.id, "20"))
    service.approve_refund(db_session, requested.id, "manager")

    with pytest.raises(InvalidTransitionError):
        service.approve_refund(db_session, requested.id, "manager")

    credit_after = CreditService().get_credit(db_session, credit.id)
    assert Decimal(credit_after.current_balance) == Decimal("30.00")
    assert credit_after.status == "available"


def test_refund_against_payment_draws_on_its_excess_credit(db_session: Session) -> None:
    service = RefundService()
    customer_id = uuid.uuid4()
    payment, credit = _credit_from_overpayment(db_session, customer_id, "75")

    requested = service.request_refund(db_session, _refund(customer_id, payment.id, "75", source_type="payment"))

    assert requested.credit_id == credit.id
    assert requested.payment_record_id == payment.id
    service.approve_refund(db_session, requested.id, "manager")
    assert CreditService().get_credit(db_session, credit.id).status == "refunded"
    assert [item.id for item in service.list_refunds(db_session, customer_id, status="completed")] == [requested.id]


def test_refund_against_payment_without_excess_is_rejected(db_session: Session) -> None:
    customer_id = uuid.uuid4()
    invoice_id = _seed_invoice(db_session, customer_id, "2026-01", "150")
    payment = PaymentService().create_payment(
        db_session,
        PaymentCreate(
            customer_id=customer_id,
            amount=Decimal("150"),
            payment_date=date(2026, 2, 1),
            source="cash",
            allocations=[AllocationEntry(invoice_id=invoice_id, amount=Decimal("150"))],
        ),
    )

    with pytest.raises(ValidationError):
        RefundService().request_refund(db_session, _refund(customer_id, payment.id, "10", source_type="payment"))


def test_deleting_source_payment_cancels_pending_refunds(db_session: Session) -> None:
    service = RefundService()
    customer_id = uuid.uuid4()
    payment, credit = _credit_from_overpayment(db_session, customer_id)
    requested = service.request_refund(db_session, _refund(customer_id, credit.id, "20"))

    PaymentService().delete_payment(db_session, payment.id, "cheque bounced")

    refund = service.get_refund(db_session, requested.id)
    assert refund.status == "cancelled"
    assert refund.cancelled_at is not None
    assert CreditService().get_credit(db_session, credit.id).status == "expired"


def test_credit_audit_flags_tampered_balance(db_session: Session) -> None:
    credits = CreditService()
    customer_id = uuid.uuid4()
    _, credit = _credit_from_overpayment(db_session, customer_id)

    row = db_session.get(CustomerCredit, credit.id)
    assert row is not None
    row.current_balance = Decimal("60.00")
    db_session.commit()

    with pytest.raises(CreditBalanceIntegrityError):
        credits.audit_credit(db_session, credit.id)
