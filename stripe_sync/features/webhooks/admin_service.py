"""
Operator tools for webhook deliveries.

Handles:
- Listing recorded deliveries (applied / failed)
- Replaying a failed delivery from its stored payload
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select

from stripe_sync.core.database import get_db_session, stripe_webhook_events
from stripe_sync.core.errors import NotFoundError, ValidationError
from stripe_sync.core.logging import log_event
from stripe_sync.features.webhooks import idempotency
from stripe_sync.features.webhooks.envelope import decode_event
from stripe_sync.features.webhooks.router import HandlerRegistry
from stripe_sync.features.webhooks.sequencer import run_event


def list_webhook_events(status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    """
    List recorded deliveries, newest first.

    Args:
        status: Filter by "applied" or "failed"
        limit: Max rows (1-500)
    """
    if status is not None and status not in (idempotency.APPLIED, idempotency.FAILED):
        raise ValidationError(f"Unknown status filter: {status}")
    limit = max(1, min(limit, 500))

    query = select(
        stripe_webhook_events.c.stripe_event_id,
        stripe_webhook_events.c.event_type,
        stripe_webhook_events.c.status,
        stripe_webhook_events.c.error,
        stripe_webhook_events.c.attempts,
        stripe_webhook_events.c.received_at,
        stripe_webhook_events.c.applied_at,
    ).order_by(desc(stripe_webhook_events.c.received_at), desc(stripe_webhook_events.c.id)).limit(limit)
    if status:
        query = query.where(stripe_webhook_events.c.status == status)

    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [dict(r._mapping) for r in rows]


async def replay_webhook_event(
    stripe_event_id: str,
    registry: HandlerRegistry,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Re-run a recorded delivery.

    A failed delivery is replayed from its stored payload through the normal
    merge and handler sequence. An applied delivery is left alone unless
    force=True, in which case only the merge re-runs (handlers do not, since
    their side effects already happened once).

    Raises:
        NotFoundError: If the event id was never recorded
        ValidationError: If there is no stored payload to replay
    """
    record = idempotency.get_event_record(stripe_event_id)
    if not record:
        raise NotFoundError(f"Event not found: {stripe_event_id}", code="event_not_found")

    applied = record["status"] == idempotency.APPLIED
    if applied and not force:
        return {
            "status": "already_applied",
            "event_id": stripe_event_id,
            "applied_at": record["applied_at"].isoformat() if record["applied_at"] else None,
        }

    if not record["payload_json"]:
        raise ValidationError(
            f"No stored payload for {stripe_event_id}; wait for provider redelivery",
            code="payload_unavailable",
        )

    event = decode_event(record["payload_json"])
    outcome = await run_event(
        event,
        registry,
        body_hash=record["payload_hash"],
        check_applied=not force,
        run_handlers=not applied,
    )
    log_event(
        "info",
        "webhook.replayed",
        event_id=stripe_event_id,
        event_type=event.type,
        extra={"force": force, "state": outcome.state.value},
    )
    return {
        "status": outcome.state.value,
        "event_id": stripe_event_id,
        "merge_action": outcome.merge_action,
        "handler_failures": len(outcome.handler_errors),
        "error": outcome.error.message if outcome.error else None,
    }
