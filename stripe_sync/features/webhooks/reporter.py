"""
Outcome reporting.

Maps a delivery's terminal state to the HTTP response the provider sees:

- COMPLETED    -> 200 (including duplicates and handler failures)
- REJECTED     -> 400, the provider will not retry
- MERGE_FAILED -> 500, the provider retries later

Handler failures never change the status. Error details are limited to a
code and message; no stack traces leave the process.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from stripe_sync.core.errors import error_payload
from stripe_sync.core.logging import get_request_id
from stripe_sync.features.webhooks.sequencer import DeliveryOutcome, DeliveryState


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: Dict[str, Any]


def build_response(outcome: DeliveryOutcome, request_id: Optional[str] = None) -> WebhookResponse:
    rid = request_id or get_request_id()

    if outcome.state == DeliveryState.COMPLETED:
        return WebhookResponse(
            status_code=200,
            body={
                "received": True,
                "event_id": outcome.event_id,
                "duplicate": outcome.duplicate,
            },
        )

    if outcome.state == DeliveryState.REJECTED:
        code = outcome.error.code if outcome.error else "rejected"
        message = outcome.error.message if outcome.error else "Delivery rejected"
        return WebhookResponse(status_code=400, body=error_payload(code, message, rid))

    if outcome.state == DeliveryState.MERGE_FAILED:
        code = outcome.error.code if outcome.error else "merge_failed"
        message = outcome.error.message if outcome.error else "Merge failed"
        return WebhookResponse(status_code=500, body=error_payload(code, message, rid))

    raise ValueError(f"Delivery outcome is not terminal: {outcome.state.value}")
