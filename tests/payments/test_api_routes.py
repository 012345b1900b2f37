import pytest


fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient  # noqa: E402

from api.dependencies import get_checkout_service, get_reconciliation_service  # noqa: E402
from application.services.checkout_service import CheckoutService  # noqa: E402
from application.services.fulfillment import FulfillmentService  # noqa: E402
from application.services.reconciliation_service import ReconciliationService  # noqa: E402
from domain.payment.entity import PaymentMethod, PaymentStatus  # noqa: E402
from main import app  # noqa: E402
from shared.codes.payment_codes import PaymentCode  # noqa: E402


USER = {"X-User-Id": "u1"}
ADMIN = {"X-User-Id": "admin1", "X-User-Role": "admin"}


@pytest.fixture
def client(uow_factory, notifier, gateway, verifier, slip_storage):
    fulfillment = FulfillmentService(uow_factory, notifier, attempts=1, backoff=0)
    checkout = CheckoutService(
        uow_factory,
        gateway=gateway,
        slip_verifier=verifier,
        slip_storage=slip_storage,
        notifier=notifier,
        fulfillment=fulfillment,
    )
    recon = ReconciliationService(uow_factory, fulfillment=fulfillment, notifier=notifier)
    app.dependency_overrides[get_checkout_service] = lambda: checkout
    app.dependency_overrides[get_reconciliation_service] = lambda: recon
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_routes_are_registered():
    paths = {route.path for route in app.routes}
    assert {
        "/api/v1/checkout/quote",
        "/api/v1/payments",
        "/api/v1/payments/{payment_id}",
        "/api/v1/payments/{payment_id}/slip",
        "/api/v1/webhooks/stripe",
        "/api/v1/admin/payments",
        "/api/v1/admin/payments/summary",
        "/api/v1/admin/payments/bulk-mark-failed",
        "/api/v1/admin/payments/{payment_id}/retry",
    } <= paths


def test_missing_caller_is_unauthorized(client):
    resp = client.post("/api/v1/checkout/quote", json={"item_kind": "course", "item_id": "c1"})
    assert resp.status_code == 401


def test_admin_routes_require_admin_role(client):
    resp = client.get("/api/v1/admin/payments/summary", headers=USER)
    assert resp.status_code == 403


def test_quote_returns_bundle_savings(client):
    resp = client.post(
        "/api/v1/checkout/quote", json={"item_kind": "bundle", "item_id": "b1"}, headers=USER
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["final_price"] == "900.00"
    assert data["savings_percent"] == 25


def test_create_payment_then_upload_slip(client, store):
    created = client.post(
        "/api/v1/payments",
        json={"item_kind": "course", "item_id": "c1", "method": "bank_transfer"},
        headers=USER,
    )
    assert created.status_code == 201
    payment_id = created.json()["data"]["payment"]["id"]

    uploaded = client.post(
        f"/api/v1/payments/{payment_id}/slip",
        files={"file": ("slip.jpg", b"\xff\xd8jpeg", "image/jpeg")},
        headers=USER,
    )

    assert uploaded.status_code == 200
    assert uploaded.json()["data"]["matched"] is True
    assert store.payments[payment_id].status == PaymentStatus.COMPLETED


def test_unknown_payment_uses_error_envelope(client):
    resp = client.get("/api/v1/payments/missing", headers=USER)

    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == PaymentCode.PAYMENT_NOT_FOUND
    assert body["data"] is None
    assert body["error"]["type"]


def test_webhook_acknowledges_authenticated_event(client, gateway, store):
    from application.dtos.payments import GatewayOutcome

    payment = store.add_payment(method=PaymentMethod.CARD_GATEWAY, external_ref="cs_1")
    gateway.outcome = GatewayOutcome(
        event_id="evt_1",
        event_type="checkout.session.completed",
        provider="stub",
        outcome="succeeded",
        session_id="cs_1",
        payment_id=payment.id,
        amount_minor=50000,
        currency="THB",
        metadata={"user_id": "u1"},
    )

    resp = client.post("/api/v1/webhooks/stripe", content=b"{}", headers={"X-Signature": "valid"})

    assert resp.status_code == 200
    assert resp.json()["data"]["applied"] is True
    assert store.payments[payment.id].status == PaymentStatus.COMPLETED


def test_webhook_with_bad_signature_is_rejected_without_details(client):
    resp = client.post("/api/v1/webhooks/stripe", content=b"{}", headers={"X-Signature": "forged"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == PaymentCode.SIGNATURE_ERROR
    assert not body["error"].get("details")


def test_bulk_mark_failed_reports_outcomes(client, store):
    verifying = store.add_payment(status=PaymentStatus.VERIFYING)
    done = store.add_payment(status=PaymentStatus.COMPLETED)

    resp = client.post(
        "/api/v1/admin/payments/bulk-mark-failed",
        json={"payment_ids": [verifying.id, done.id]},
        headers=ADMIN,
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert (data["succeeded"], data["conflicts"]) == (1, 1)


def test_approve_after_reject_is_refused(client, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)
    url = f"/api/v1/admin/payments/{payment.id}/retry"

    rejected = client.post(url, json={"action": "reject", "reason": "edited slip"}, headers=ADMIN)
    approved = client.post(url, json={"action": "approve"}, headers=ADMIN)

    assert rejected.status_code == 200
    assert approved.status_code == 400
    assert approved.json()["code"] == PaymentCode.INVALID_PAYMENT_ACTION


def test_oversized_slip_is_rejected_without_reading_it_all(client, store, verifier, monkeypatch):
    from core.settings import payment_settings

    monkeypatch.setattr(payment_settings.slip, "max_bytes", 16)
    payment = store.add_payment()

    resp = client.post(
        f"/api/v1/payments/{payment.id}/slip",
        files={"file": ("slip.jpg", b"\xff\xd8" + b"x" * 1024, "image/jpeg")},
        headers=USER,
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == PaymentCode.SLIP_REJECTED
    assert body["error"]["details"]["reason"] == "too_large"
    assert store.payments[payment.id].status == PaymentStatus.PENDING
    assert verifier.calls == []
