import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreatePaymentRequest, SlipVerificationRequest
from application.services.checkout_service import CheckoutService
from application.services.fulfillment import FulfillmentService
from core.settings import payment_settings
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ExternalServiceException
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import SlipVerifierError
from infrastructure.external.slip.slipok_client import SlipOKClient
from shared.codes.payment_codes import PaymentCode


@pytest.fixture(autouse=True)
def slipok_credentials(monkeypatch):
    monkeypatch.setattr(payment_settings.slipok, "api_key", "SLIPOK-KEY")
    monkeypatch.setattr(payment_settings.slipok, "branch_id", "12345")
    monkeypatch.setattr(payment_settings.slipok, "base_url", "https://slipok.test/api/line/apikey")


def _request(amount="500.00"):
    return SlipVerificationRequest(
        payment_id="p1",
        image=b"\xff\xd8jpeg",
        filename="slip.jpg",
        content_type="image/jpeg",
        expected_amount=Decimal(amount),
        currency="THB",
    )


def _client(handler):
    return SlipOKClient(transport=httpx.MockTransport(handler))


def _ok(amount, ref="TX-001"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"amount": amount, "transRef": ref}})
    return handler


@pytest.mark.asyncio
async def test_matching_slip_posts_to_branch_with_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("x-authorization")
        seen["body"] = request.content
        return httpx.Response(200, json={"success": True, "data": {"amount": 500, "transRef": "TX-001"}})

    client = _client(handler)
    verdict = await client.verify(_request())
    await client.aclose()

    assert verdict.matched
    assert verdict.extracted_amount == Decimal("500")
    assert verdict.raw_reference == "TX-001"
    assert seen["url"] == "https://slipok.test/api/line/apikey/12345"
    assert seen["auth"] == "SLIPOK-KEY"
    assert b'name="files"' in seen["body"]
    assert b'name="log"' in seen["body"]


@pytest.mark.asyncio
async def test_one_satang_short_is_not_a_match():
    verdict = await _client(_ok(499.99)).verify(_request("500.00"))

    assert not verdict.matched
    assert verdict.extracted_amount == Decimal("499.99")
    assert verdict.reason == "amount_mismatch"


@pytest.mark.asyncio
async def test_configured_epsilon_allows_small_differences(monkeypatch):
    monkeypatch.setattr(payment_settings.slip, "amount_epsilon", {"THB": Decimal("0.01")})

    verdict = await _client(_ok(499.99)).verify(_request("500.00"))

    assert verdict.matched


@pytest.mark.asyncio
async def test_duplicate_slip_is_a_verdict_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={
            "success": False,
            "code": 1012,
            "message": "Duplicate slip",
            "data": {"amount": 500, "transRef": "TX-OLD"},
        })

    verdict = await _client(handler).verify(_request())

    assert not verdict.matched
    assert verdict.reason == "slip_duplicate"
    assert verdict.raw_reference == "TX-OLD"


@pytest.mark.asyncio
async def test_quota_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"success": False, "code": 1002, "message": "Invalid API key"})

    with pytest.raises(SlipVerifierError) as exc:
        await _client(handler).verify(_request())

    assert exc.value.service == "slipok"
    assert exc.value.details["provider_code"] == "1002"


@pytest.mark.asyncio
async def test_non_json_server_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, content=b"<html>Bad Gateway</html>")

    with pytest.raises(SlipVerifierError) as exc:
        await _client(handler).verify(_request())

    assert exc.value.details["status_code"] == 502


@pytest.mark.asyncio
async def test_success_without_amount_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=json.dumps({"success": True, "data": {}}).encode())

    with pytest.raises(SlipVerifierError):
        await _client(handler).verify(_request())


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [
    {"amount": "NaN", "transRef": "TX-001"},
    {"amount": "Infinity"},
    ["oops"],
    "oops",
])
async def test_malformed_success_body_raises(data):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    with pytest.raises(SlipVerifierError):
        await _client(handler).verify(_request())


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [{"amount": "NaN"}, ["oops"]])
async def test_malformed_body_fails_the_payment_at_checkout(data, uow_factory, notifier, slip_storage, store):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    service = CheckoutService(
        uow_factory,
        slip_verifier=_client(handler),
        slip_storage=slip_storage,
        notifier=notifier,
        fulfillment=FulfillmentService(uow_factory, notifier, attempts=1, backoff=0),
    )
    created = await service.create_payment("u1", CreatePaymentRequest(
        item_kind=ItemKind.COURSE, item_id="c1", method=PaymentMethod.BANK_TRANSFER,
    ))

    with pytest.raises(ExternalServiceException):
        await service.attach_slip("u1", created.payment.id, b"\xff\xd8jpeg", content_type="image/jpeg")

    payment = store.payments[created.payment.id]
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "verifier_error"
    assert store.enrollments == {}


@pytest.mark.asyncio
async def test_timeout_maps_to_timeout_code():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(SlipVerifierError) as exc:
        await _client(handler).verify(_request())

    assert exc.value.code == PaymentCode.TIMEOUT


@pytest.mark.asyncio
async def test_missing_credentials_raise_before_calling_out(monkeypatch):
    monkeypatch.setattr(payment_settings.slipok, "api_key", None)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(SlipVerifierError):
        await _client(handler).verify(_request())

    assert calls == []
