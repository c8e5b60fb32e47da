import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.app import FastAPIManager
from api.database import get_async_session
from api.routers.codes.routes import get_code_service
from api.routers.payments.routers import webhook
from config import get_env
from services.affiliate import (
    ErrorKind,
    TransferResult,
    ValidationResult,
    get_attribution_transfer,
    get_checkout_service,
    get_code_validator,
    get_commission_ledger,
)
from services.affiliate.checkout import ManualCodeResult
from services.affiliate.errors import NothingToPay, ProviderTransferFailed
from services.payouts import get_refund_verifier

SERVICE_KEY = "svc-test-key"


async def no_session():
    yield None


class FakeValidator:
    async def validate(self, code):
        if code.upper() == "SOMMER20":
            return ValidationResult(
                success=True, code="SOMMER20", owner_id=uuid.uuid4(), owner_name="Kari", commission_rate=Decimal("20"),
            )
        return ValidationResult.failed(ErrorKind.NOT_FOUND)


class FakeTransfer:
    def __init__(self):
        self.calls = []

    async def transfer(self, subject, visitor_session=None):
        self.calls.append((subject, visitor_session))
        return TransferResult(migrated=True, should_clear_token=True)


class FakeCheckout:
    async def apply_manual_code(self, code, items, subject=None):
        return ManualCodeResult(accepted=False, reason="expired", message="This code has expired.")


class FakeLedger:
    def __init__(self):
        self.recorded = []
        self.refunded = []

    async def record_commission(self, booking_id):
        self.recorded.append(booking_id)
        return None

    async def record_refund(self, booking_id):
        self.refunded.append(booking_id)
        return None

    async def generate_payout_batch(self, owner_id, period_start, period_end):
        raise NothingToPay("nothing")

    async def submit_payout_batch(self, batch_id):
        raise ProviderTransferFailed("destination rejected")


class FakeRefunds:
    def __init__(self, confirmed: bool = True):
        self.confirmed = confirmed
        self.checked = []

    async def is_refunded(self, refund_id):
        self.checked.append(refund_id)
        return self.confirmed


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setattr(get_env(), "SERVICE_API_TOKEN", SERVICE_KEY)
    api = FastAPIManager().get_app()
    api.dependency_overrides[get_async_session] = no_session
    api.dependency_overrides[get_refund_verifier] = FakeRefunds
    yield api
    api.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def test_health(client):
    assert client.get("/check-health").json() == {"ok": True}


def test_validate_code(app, client):
    app.dependency_overrides[get_code_validator] = FakeValidator

    ok = client.post("/affiliate/codes/validate", json={"code": "sommer20"})
    missing = client.post("/affiliate/codes/validate", json={"code": "nope"})

    assert ok.status_code == 200
    assert ok.json()["success"] is True
    assert ok.json()["code"] == "SOMMER20"
    assert missing.json()["success"] is False
    assert missing.json()["error"] == "not_found"


def test_transfer_requires_user_and_clears_cookie(app, client):
    fake = FakeTransfer()
    app.dependency_overrides[get_attribution_transfer] = lambda: fake
    user_id = uuid.uuid4()

    assert client.post("/affiliate/attribution/transfer").status_code == 401

    response = client.post(
        "/affiliate/attribution/transfer",
        headers={"X-User-Id": str(user_id), "X-Visitor-Session": "v-1"},
    )

    assert response.status_code == 200
    assert response.json() == {"migrated": True, "should_clear_token": True}
    assert fake.calls == [(user_id, "v-1")]
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("affiliate_attribution=")
    assert "Max-Age=0" in cookie


def test_manual_code_rejection_is_400_with_reason(app, client):
    app.dependency_overrides[get_checkout_service] = FakeCheckout

    response = client.post("/affiliate/checkout/manual-code", json={"code": "OLD2026", "items": []})

    assert response.status_code == 400
    assert response.json()["detail"] == {"reason": "expired", "message": "This code has expired."}


def test_service_routes_require_key(app, client):
    app.dependency_overrides[get_commission_ledger] = FakeLedger

    assert client.get(f"/payouts/earnings/{uuid.uuid4()}").status_code == 401
    assert client.get("/codes/SOMMER20", headers={"x-api-key": "wrong"}).status_code == 401


def test_payout_errors_map_to_http(app, client):
    app.dependency_overrides[get_commission_ledger] = FakeLedger
    headers = {"x-api-key": SERVICE_KEY}

    generate = client.post(
        "/payouts/batches",
        json={"owner_id": str(uuid.uuid4()), "period_start": "2026-05-01T00:00:00", "period_end": "2026-06-01T00:00:00"},
        headers=headers,
    )
    submit = client.post(f"/payouts/batches/{uuid.uuid4()}/submit", headers=headers)
    backwards = client.post(
        "/payouts/batches",
        json={"owner_id": str(uuid.uuid4()), "period_start": "2026-06-01T00:00:00", "period_end": "2026-05-01T00:00:00"},
        headers=headers,
    )

    assert generate.status_code == 409
    assert generate.json()["detail"]["reason"] == "nothing_to_pay"
    assert submit.status_code == 502
    assert submit.json()["detail"]["reason"] == "provider_transfer_failed"
    assert backwards.status_code == 422


def webhook_body(event: str, metadata: dict) -> dict:
    return {
        "type": "notification",
        "event": event,
        "object": {
            "id": "2d5c7e9a-000f-5000-9000-1b3c5d7e9f00",
            "status": "succeeded",
            "amount": {"value": "1000.00", "currency": "NOK"},
            "created_at": datetime(2026, 6, 1, 12, 0).isoformat(),
            "metadata": metadata,
        },
    }


def test_webhook_routes_events_to_ledger(app, client):
    fake = FakeLedger()
    app.dependency_overrides[get_commission_ledger] = lambda: fake
    booking_id = uuid.uuid4()

    paid = client.post("/pay/webhook", json=webhook_body("payment.succeeded", {"booking_id": str(booking_id)}))
    refund = client.post("/pay/webhook", json=webhook_body("refund.succeeded", {"booking_id": str(booking_id)}))
    other = client.post("/pay/webhook", json=webhook_body("payment.waiting_for_capture", {}))

    assert paid.json() == {"status": "ok"}
    assert refund.json() == {"status": "ok"}
    assert other.json() == {"status": "ignored"}
    assert fake.recorded == [booking_id]
    assert fake.refunded == [booking_id]


def test_unconfirmed_refund_does_not_touch_commissions(app, client):
    fake = FakeLedger()
    refunds = FakeRefunds(confirmed=False)
    app.dependency_overrides[get_commission_ledger] = lambda: fake
    app.dependency_overrides[get_refund_verifier] = lambda: refunds

    body = webhook_body("refund.succeeded", {"booking_id": str(uuid.uuid4())})
    response = client.post("/pay/webhook", json=body)

    assert response.json() == {"status": "ignored"}
    assert refunds.checked == [body["object"]["id"]]
    assert fake.refunded == []


class FakeTask:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.queued = []

    def delay(self, *args):
        if self.broken:
            raise ConnectionError("broker unreachable")
        self.queued.append(args)


class ExplodingLedger(FakeLedger):
    async def record_commission(self, booking_id):
        raise RuntimeError("db down")


def test_failed_commission_is_queued_for_retry(app, client, monkeypatch):
    task = FakeTask()
    monkeypatch.setattr(webhook, "record_commission_task", task)
    app.dependency_overrides[get_commission_ledger] = ExplodingLedger
    booking_id = uuid.uuid4()

    response = client.post("/pay/webhook", json=webhook_body("payment.succeeded", {"booking_id": str(booking_id)}))

    assert response.status_code == 200
    assert response.json() == {"status": "queued"}
    assert task.queued == [(str(booking_id),)]


def test_webhook_always_answers_200(app, client, monkeypatch):
    monkeypatch.setattr(webhook, "record_commission_task", FakeTask(broken=True))
    app.dependency_overrides[get_commission_ledger] = ExplodingLedger

    response = client.post("/pay/webhook", json=webhook_body("payment.succeeded", {"booking_id": str(uuid.uuid4())}))

    assert response.status_code == 200
    assert response.json() == {"status": "error"}


def test_code_admin_reads_are_routed(app, client):
    class FakeCodes:
        async def list_codes(self, session, limit=50, offset=0):
            self.page = (limit, offset)
            return []

        async def get_active_for_owner(self, owner_id, session):
            return None

    codes = FakeCodes()
    app.dependency_overrides[get_code_service] = lambda: codes
    headers = {"x-api-key": SERVICE_KEY}

    listing = client.get("/codes", params={"limit": 10, "offset": 20}, headers=headers)
    missing = client.get(f"/codes/by-stylist/{uuid.uuid4()}", headers=headers)

    assert listing.status_code == 200
    assert listing.json() == []
    assert codes.page == (10, 20)
    assert missing.status_code == 404
