"""End-to-end tests for the webhook HTTP endpoint."""

from fastapi.testclient import TestClient

from stripe_sync.core.config import Settings
from stripe_sync.features.billing import queries
from stripe_sync.features.webhooks.router import HandlerRegistry
from stripe_sync.main import create_app
from stripe_sync.tests import factories


def _post(client, envelope, secret, path="/stripe/webhook"):
    body = factories.encode(envelope)
    return client.post(
        path,
        content=body,
        headers={"Stripe-Signature": factories.signed_header(body, secret), "Content-Type": "application/json"},
    )


def test_signed_delivery_is_applied(client, webhook_secret):
    resp = _post(client, factories.event("product.created", factories.product(), event_id="evt_api_1"), webhook_secret)

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_id": "evt_api_1", "duplicate": False}
    assert resp.headers.get("x-request-id")
    assert queries.get_product("prod_basic")["name"] == "Basic"


def test_duplicate_delivery_reports_duplicate(client, webhook_secret):
    envelope = factories.event("product.created", factories.product(), event_id="evt_api_dup")
    _post(client, envelope, webhook_secret)
    resp = _post(client, envelope, webhook_secret)

    assert resp.status_code == 200
    assert resp.json()["duplicate"] is True


def test_bad_signature_is_400(client):
    resp = _post(client, factories.event("product.created", factories.product()), "whsec_wrong")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "authentication_failed"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")
    assert queries.get_product("prod_basic") is None


def test_missing_signature_is_400(client):
    resp = client.post("/stripe/webhook", content=b"{}")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "authentication_failed"


def test_malformed_event_is_400(client, webhook_secret):
    body = b'{"id": "evt_x"}'
    resp = client.post("/stripe/webhook", content=body, headers={"Stripe-Signature": factories.signed_header(body, webhook_secret)})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "malformed_event"


def test_merge_failure_is_500_and_retryable(client, webhook_secret):
    envelope = factories.event("invoice.paid", factories.invoice(amount_due=None), event_id="evt_api_bad")
    resp = _post(client, envelope, webhook_secret)

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "unknown_resource_shape"

    envelope["data"]["object"]["amount_due"] = 1000
    retry = _post(client, envelope, webhook_secret)
    assert retry.status_code == 200
    assert retry.json()["duplicate"] is False


def test_handler_failure_still_200(webhook_secret):
    def explode(event):
        raise RuntimeError("boom")

    client = TestClient(create_app(HandlerRegistry({"invoice.paid": explode})))
    resp = _post(client, factories.event("invoice.paid", factories.invoice()), webhook_secret)

    assert resp.status_code == 200
    assert resp.json()["received"] is True


def test_async_handler_receives_event(webhook_secret):
    seen = []

    async def on_checkout(event):
        seen.append((event.type, event.object_id))

    client = TestClient(create_app(HandlerRegistry({"checkout.session.completed": on_checkout})))
    _post(client, factories.event("checkout.session.completed", factories.checkout_session()), webhook_secret)

    assert seen == [("checkout.session.completed", "cs_test_1")]
    assert queries.get_checkout_session("cs_test_1")["status"] == "complete"


def test_custom_webhook_path(webhook_secret):
    cfg = Settings(WEBHOOK_PATH="/hooks/stripe", STRIPE_WEBHOOK_SECRET=webhook_secret)
    client = TestClient(create_app(settings_obj=cfg))

    resp = _post(client, factories.event("customer.created", factories.customer()), webhook_secret, path="/hooks/stripe")
    assert resp.status_code == 200
    assert client.post("/stripe/webhook", content=b"{}").status_code == 404
