from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tiffin import events
from tiffin.core.config import get_settings
from tiffin.core.database import Base, get_db
from tiffin.main import app


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


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    get_settings.cache_clear()
    events.published_events.clear()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    events.published_events.clear()
    get_settings.cache_clear()


def _create_order(client: TestClient, customer_id: str, **overrides) -> str:
    body = {
        "customer_id": customer_id,
        "meal_plan_name": "Veg Thali",
        "price": "300",
        "start_date": "2026-04-01",
        "end_date": "2026-04-30",
    }
    body.update(overrides)
    response = client.post("/calendar/orders", json=body)
    assert response.status_code == 201
    return response.json()["id"]


def test_calendar_changes_recompute_open_billing(client: TestClient) -> None:
    customer_id = str(uuid.uuid4())
    order_id = _create_order(client, customer_id)

    for day in ("01", "02", "03"):
        response = client.put(f"/calendar/orders/{order_id}/entries/2026-04-{day}", json={"status": "delivered"})
        assert response.status_code == 200
    assert client.put(f"/calendar/orders/{order_id}/entries/2026-04-04", json={"status": "extra"}).status_code == 200

    billings = client.get("/billing/order-billings", params={"customer_id": customer_id, "billing_month": "2026-04"})
    assert billings.status_code == 200
    [billing] = billings.json()
    assert billing["delivered_count"] == 3
    assert billing["extra_count"] == 1
    assert Decimal(billing["total_amount"]) == Decimal("40.00")

    cleared = client.delete(f"/calendar/orders/{order_id}/entries/2026-04-04")
    assert cleared.status_code == 204
    refreshed = client.get(f"/billing/order-billings/{billing['id']}")
    assert Decimal(refreshed.json()["total_amount"]) == Decimal("30.00")

    month = client.get(f"/calendar/orders/{order_id}/months/2026-04")
    assert [item["status"] for item in month.json()["entries"]] == ["delivered", "delivered", "delivered"]


def test_entry_outside_order_window_is_rejected(client: TestClient) -> None:
    order_id = _create_order(client, str(uuid.uuid4()))

    response = client.put(f"/calendar/orders/{order_id}/entries/2026-05-01", json={"status": "delivered"})

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_billing_lifecycle_over_http(client: TestClient) -> None:
    customer_id = str(uuid.uuid4())
    order_id = _create_order(client, customer_id, end_date="2026-04-01")
    client.put(f"/calendar/orders/{order_id}/entries/2026-04-01", json={"status": "delivered"})

    computed = client.post(f"/billing/orders/{order_id}/months/2026-04/compute", params={"actor": "admin"})
    assert computed.status_code == 200
    billing_id = computed.json()["id"]
    assert computed.json()["status"] == "calculating"
    assert Decimal(computed.json()["total_amount"]) == Decimal("10.00")

    submitted = client.post(f"/billing/order-billings/{billing_id}/submit")
    assert submitted.json()["status"] == "pending"

    finalized = client.post(f"/billing/order-billings/{billing_id}/finalize", json={"actor": "kitchen-lead"})
    assert finalized.status_code == 200
    assert finalized.json()["finalized_by"] == "kitchen-lead"

    immutable = client.post(f"/billing/orders/{order_id}/months/2026-04/compute")
    assert immutable.status_code == 422
    assert immutable.json()["error"] == "immutable_billing"

    frozen_edit = client.put(f"/calendar/orders/{order_id}/entries/2026-04-01", json={"status": "absent"})
    assert frozen_edit.status_code == 422
    assert frozen_edit.json()["error"] == "immutable_billing"

    invoice = client.get("/billing/invoices", params={"customer_id": customer_id, "billing_month": "2026-04"})
    assert invoice.status_code == 200
    invoice_id = invoice.json()["id"]
    assert invoice.json()["can_approve"] is True
    assert invoice.json()["status"] == "pending"

    approved = client.post(f"/billing/invoices/{invoice_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["status"] == "finalized"

    issued = client.post(f"/billing/invoices/{invoice_id}/issue", json={"actor": "manager"})
    assert issued.json()["status"] == "invoiced"

    unpaid = client.get(f"/billing/customers/{customer_id}/unpaid")
    assert [item["id"] for item in unpaid.json()] == [invoice_id]

    audit = client.get(f"/billing/order-billings/{billing_id}/audit")
    assert audit.status_code == 200
    assert audit.json()["consistent"] is True

    assert {event["event_type"] for event in events.published_events} >= {
        "billing.computed",
        "billing.submitted",
        "billing.finalized",
        "billing.invoiced",
    }


def test_reopen_requires_reason_and_finalized_status(client: TestClient) -> None:
    order_id = _create_order(client, str(uuid.uuid4()))
    billing_id = client.post(f"/billing/orders/{order_id}/months/2026-04/compute").json()["id"]

    missing_reason = client.post(f"/billing/order-billings/{billing_id}/reopen", json={"actor": "admin"})
    assert missing_reason.status_code == 422

    not_finalized = client.post(
        f"/billing/order-billings/{billing_id}/reopen",
        json={"actor": "admin", "reason": "recount"},
    )
    assert not_finalized.status_code == 422
    assert not_finalized.json()["error"] == "invalid_transition"

    client.post(f"/billing/order-billings/{billing_id}/finalize")
    reopened = client.post(
        f"/billing/order-billings/{billing_id}/reopen",
        json={"actor": "admin", "reason": "recount"},
    )
    assert reopened.status_code == 200
    assert reopened.json()["status"] == "calculating"


def test_unknown_resources_return_404(client: TestClient) -> None:
    missing = str(uuid.uuid4())

    assert client.get(f"/billing/order-billings/{missing}").status_code == 404
    assert client.get(f"/billing/invoices/{missing}").status_code == 404
    response = client.post(f"/billing/orders/{missing}/months/2026-04/compute")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    bad_month = client.get("/billing/order-billings", params={"customer_id": missing, "billing_month": "2026-4"})
    assert bad_month.status_code == 422


def test_business_profile_and_health(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMPANY_NAME", "Annapurna Tiffins")
    get_settings.cache_clear()

    profile = client.get("/billing/profile")
    assert profile.json() == {
        "company_name": "Annapurna Tiffins",
        "etransfer_email": "payments@example.com",
        "currency": "CAD",
    }

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
