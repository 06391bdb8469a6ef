"""
Webhook idempotency guard.

Persists the set of event ids whose merge has committed. A delivery whose id
is already applied short-circuits to a success response without re-running
the merge or any handler.

Every recorded event keeps its payload for operator replay. Events whose merge
failed are recorded with status "failed" and are never treated as applied, so
a redelivery or a manual replay runs them again.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from stripe_sync.core.database import get_db_session, stripe_webhook_events


logger = logging.getLogger("stripe_sync.webhooks")

APPLIED = "applied"
FAILED = "failed"


def payload_hash(body: Optional[bytes]) -> Optional[str]:
    if body is None:
        return None
    return hashlib.sha256(body).hexdigest()


def has_applied(event_id: str) -> bool:
    """True if this event id's merge has already committed."""
    with get_db_session() as session:
        row = session.execute(
            select(stripe_webhook_events.c.status).where(
                stripe_webhook_events.c.stripe_event_id == event_id
            )
        ).fetchone()
    return bool(row) and row.status == APPLIED


def mark_applied(
    event_id: str,
    event_type: str,
    body_hash: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record an event id as applied. Call only after the merge has committed.

    Safe to call twice for the same id (concurrent duplicate deliveries).
    """
    now = datetime.now(timezone.utc)
    values = {
        "status": APPLIED,
        "error": None,
        "applied_at": now,
    }
    if body_hash:
        values["payload_hash"] = body_hash
    if payload is not None:
        values["payload_json"] = payload

    with get_db_session() as session:
        updated = session.execute(
            update(stripe_webhook_events)
            .where(stripe_webhook_events.c.stripe_event_id == event_id)
            .values(**values, attempts=stripe_webhook_events.c.attempts + 1)
        )
        if updated.rowcount:
            return

    try:
        with get_db_session() as session:
            session.execute(
                insert(stripe_webhook_events).values(
                    stripe_event_id=event_id,
                    event_type=event_type,
                    attempts=1,
                    **values,
                )
            )
    except IntegrityError:
        # Race: a concurrent delivery of the same event recorded it first
        logger.info("Event %s already recorded by a concurrent delivery", event_id)
        with get_db_session() as session:
            session.execute(
                update(stripe_webhook_events)
                .where(stripe_webhook_events.c.stripe_event_id == event_id)
                .values(**values)
            )


def record_failure(
    event_id: str,
    event_type: str,
    error: str,
    payload: Optional[Dict[str, Any]] = None,
    body_hash: Optional[str] = None,
) -> None:
    """Record a failed merge attempt without marking the event applied."""
    with get_db_session() as session:
        existing = session.execute(
            select(stripe_webhook_events.c.status).where(
                stripe_webhook_events.c.stripe_event_id == event_id
            )
        ).fetchone()

        if existing and existing.status == APPLIED:
            # A concurrent delivery already applied it; keep that state
            return

        if existing:
            session.execute(
                update(stripe_webhook_events)
                .where(stripe_webhook_events.c.stripe_event_id == event_id)
                .values(
                    status=FAILED,
                    error=error,
                    payload_json=payload,
                    attempts=stripe_webhook_events.c.attempts + 1,
                )
            )
        else:
            session.execute(
                insert(stripe_webhook_events).values(
                    stripe_event_id=event_id,
                    event_type=event_type,
                    status=FAILED,
                    error=error,
                    payload_json=payload,
                    payload_hash=body_hash,
                    attempts=1,
                )
            )


def get_event_record(event_id: str) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(
            select(stripe_webhook_events).where(
                stripe_webhook_events.c.stripe_event_id == event_id
            )
        ).fetchone()
    return dict(row._mapping) if row else None


def clear_all_events() -> None:
    """Forget every recorded event (testing only)."""
    with get_db_session() as session:
        session.execute(stripe_webhook_events.delete())
