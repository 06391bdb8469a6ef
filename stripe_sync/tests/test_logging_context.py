"""Tests for structured logging and request_id propagation."""

import json
import logging

from stripe_sync.core.logging import JsonFormatter, log_event, request_id_ctx_var
from stripe_sync.tests import factories


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="stripe_sync"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records


def test_webhook_logs_carry_event_id(client, webhook_secret, caplog):
    body = factories.encode(factories.event("customer.created", factories.customer(), event_id="evt_log"))
    with caplog.at_level(logging.INFO, logger="stripe_sync"):
        client.post("/stripe/webhook", content=body, headers={"Stripe-Signature": factories.signed_header(body, webhook_secret)})
    merged = [r for r in caplog.records if r.getMessage() == "webhook.merged"]
    assert merged
    assert merged[0].event_id == "evt_log"
    assert merged[0].event_type == "customer.created"


def test_log_event_uses_context_request_id(caplog):
    token = request_id_ctx_var.set("rid-ctx")
    try:
        with caplog.at_level(logging.INFO, logger="stripe_sync"):
            log_event("info", "webhook.test", event_id="evt_1", extra={"payload": "x" * 600})
    finally:
        request_id_ctx_var.reset(token)
    record = [r for r in caplog.records if r.getMessage() == "webhook.test"][0]
    assert record.request_id == "rid-ctx"
    assert record.payload.endswith("...<truncated>")


def test_json_formatter_includes_event_fields():
    record = logging.LogRecord("stripe_sync.webhooks", logging.ERROR, __file__, 1, "webhook.merge_failed", None, None)
    record.request_id = "rid-1"
    record.event_id = "evt_1"
    record.error_code = "unknown_resource_shape"
    line = json.loads(JsonFormatter().format(record))
    assert line["event_id"] == "evt_1"
    assert line["error_code"] == "unknown_resource_shape"
    assert line["request_id"] == "rid-1"
