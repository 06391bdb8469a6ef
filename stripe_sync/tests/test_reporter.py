"""Tests for mapping delivery outcomes to HTTP responses."""

import pytest

from stripe_sync.core.errors import AppError, AuthenticationError, HandlerExecutionError, UnknownResourceShapeError
from stripe_sync.features.webhooks.reporter import build_response
from stripe_sync.features.webhooks.sequencer import DeliveryOutcome, DeliveryState


def _outcome(state, **kwargs):
    outcome = DeliveryOutcome(event_id="evt_1", event_type="invoice.paid", **kwargs)
    outcome.advance(state)
    return outcome


def test_completed_is_200():
    response = build_response(_outcome(DeliveryState.COMPLETED))
    assert response.status_code == 200
    assert response.body == {"received": True, "event_id": "evt_1", "duplicate": False}


def test_duplicate_is_200():
    response = build_response(_outcome(DeliveryState.COMPLETED, duplicate=True))
    assert response.status_code == 200
    assert response.body["duplicate"] is True


def test_handler_failures_do_not_change_status():
    failure = HandlerExecutionError("boom", handler_name="grant_access", event_id="evt_1")
    response = build_response(_outcome(DeliveryState.COMPLETED, handler_errors=[failure]))
    assert response.status_code == 200


def test_rejected_is_400_with_error_body():
    outcome = _outcome(DeliveryState.REJECTED, error=AuthenticationError("Invalid signature"))
    response = build_response(outcome, request_id="rid-1")
    assert response.status_code == 400
    assert response.body["error"] == {
        "code": "authentication_failed",
        "message": "Invalid signature",
        "request_id": "rid-1",
    }


def test_merge_failed_is_500():
    outcome = _outcome(DeliveryState.MERGE_FAILED, error=UnknownResourceShapeError("price x is missing 'currency'"))
    response = build_response(outcome, request_id="rid-2")
    assert response.status_code == 500
    assert response.body["error"]["code"] == "unknown_resource_shape"
    assert "Traceback" not in response.body["detail"]


def test_merge_failed_without_error_uses_generic_code():
    response = build_response(_outcome(DeliveryState.MERGE_FAILED))
    assert response.body["error"]["code"] == "merge_failed"


def test_wrapped_unexpected_error_keeps_code():
    outcome = _outcome(DeliveryState.MERGE_FAILED, error=AppError("Merge failed: db down", code="merge_failed"))
    assert build_response(outcome).body["error"]["code"] == "merge_failed"


def test_non_terminal_outcome_is_an_error():
    with pytest.raises(ValueError):
        build_response(_outcome(DeliveryState.MERGING))
