"""
Webhook delivery sequencing.

Per delivery:

    RECEIVED -> AUTHENTICATED -> DECODED -> DEDUPLICATED -> MERGING -> MERGED
             -> HANDLERS_RUNNING -> COMPLETED

REJECTED is reachable before the event is decoded (bad signature, bad body).
MERGE_FAILED is reachable from MERGING and leaves the event unapplied so the
provider's redelivery runs it again.

The event is marked applied as soon as the merge commits and before any
custom handler runs. Handlers then run one after another outside the
transaction; each failure is recorded on the outcome and never changes it.
"""
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from stripe_sync.core.config import settings
from stripe_sync.core.database import get_db_session
from stripe_sync.core.errors import (
    AppError,
    AuthenticationError,
    HandlerExecutionError,
    MalformedEventError,
)
from stripe_sync.core.logging import log_event
from stripe_sync.features.webhooks import idempotency
from stripe_sync.features.webhooks.envelope import StripeEvent, decode_event
from stripe_sync.features.webhooks.router import Handler, HandlerRegistry, Route, handler_name
from stripe_sync.features.webhooks.store import apply_merge
from stripe_sync.features.webhooks.verification import verify_signature


class DeliveryState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    DECODED = "decoded"
    DEDUPLICATED = "deduplicated"
    MERGING = "merging"
    MERGED = "merged"
    HANDLERS_RUNNING = "handlers_running"
    COMPLETED = "completed"
    REJECTED = "rejected"
    MERGE_FAILED = "merge_failed"


TERMINAL_STATES = {DeliveryState.COMPLETED, DeliveryState.REJECTED, DeliveryState.MERGE_FAILED}


@dataclass
class DeliveryOutcome:
    """What happened to one delivery; consumed by the outcome reporter."""
    state: DeliveryState = DeliveryState.RECEIVED
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    duplicate: bool = False
    merge_action: Optional[str] = None
    error: Optional[AppError] = None
    handler_errors: List[HandlerExecutionError] = field(default_factory=list)
    history: List[DeliveryState] = field(default_factory=lambda: [DeliveryState.RECEIVED])

    def advance(self, state: DeliveryState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


async def process_delivery(
    body: bytes,
    signature_header: Optional[str],
    registry: HandlerRegistry,
    *,
    secret: Optional[str] = None,
    monotonic: Optional[bool] = None,
) -> DeliveryOutcome:
    """
    Run one inbound delivery through authentication, decoding and the
    merge/handler sequence.

    Never raises for expected failures; the outcome carries the terminal state.
    """
    outcome = DeliveryOutcome()

    try:
        verify_signature(body, signature_header, secret=secret)
    except AuthenticationError as e:
        return _reject(outcome, e)
    outcome.advance(DeliveryState.AUTHENTICATED)

    try:
        event = decode_event(body)
    except MalformedEventError as e:
        return _reject(outcome, e)
    outcome.event_id = event.id
    outcome.event_type = event.type
    outcome.advance(DeliveryState.DECODED)

    return await run_event(
        event,
        registry,
        outcome=outcome,
        body_hash=idempotency.payload_hash(body),
        monotonic=monotonic,
    )


async def run_event(
    event: StripeEvent,
    registry: HandlerRegistry,
    *,
    outcome: Optional[DeliveryOutcome] = None,
    body_hash: Optional[str] = None,
    monotonic: Optional[bool] = None,
    check_applied: bool = True,
    run_handlers: bool = True,
) -> DeliveryOutcome:
    """Deduplicate, merge, mark applied, then run handlers for a decoded event."""
    if outcome is None:
        outcome = DeliveryOutcome(event_id=event.id, event_type=event.type)
        outcome.advance(DeliveryState.DECODED)

    if check_applied and idempotency.has_applied(event.id):
        outcome.duplicate = True
        outcome.advance(DeliveryState.DEDUPLICATED)
        outcome.advance(DeliveryState.COMPLETED)
        log_event("info", "webhook.duplicate", event_id=event.id, event_type=event.type)
        return outcome
    outcome.advance(DeliveryState.DEDUPLICATED)

    route = registry.route(event.type)
    guard = settings.MONOTONIC_EVENT_GUARD if monotonic is None else monotonic

    outcome.advance(DeliveryState.MERGING)
    try:
        outcome.merge_action = _merge(event, route, guard)
        idempotency.mark_applied(event.id, event.type, body_hash, payload=event.raw or None)
    except Exception as e:
        error = e if isinstance(e, AppError) else AppError(f"Merge failed: {e}", code="merge_failed")
        outcome.error = error
        outcome.advance(DeliveryState.MERGE_FAILED)
        log_event(
            "error",
            "webhook.merge_failed",
            event_id=event.id,
            event_type=event.type,
            error_code=error.code,
            exc_info=not isinstance(e, AppError),
            extra={"error": error.message},
        )
        idempotency.record_failure(event.id, event.type, error.message, payload=event.raw or None, body_hash=body_hash)
        return outcome
    outcome.advance(DeliveryState.MERGED)
    log_event(
        "info",
        "webhook.merged",
        event_id=event.id,
        event_type=event.type,
        extra={"resource": route.resource or "none", "action": outcome.merge_action or "noop"},
    )

    if run_handlers:
        outcome.advance(DeliveryState.HANDLERS_RUNNING)
        await _run_handlers(event, route, outcome)

    outcome.advance(DeliveryState.COMPLETED)
    return outcome


def _merge(event: StripeEvent, route: Route, monotonic: bool) -> Optional[str]:
    if route.is_noop:
        return None
    with get_db_session() as session:
        result = apply_merge(
            session,
            route.resource,
            event.data_object,
            event.created,
            deleted=route.deleted,
            monotonic=monotonic,
        )
    return result.action


async def _run_handlers(event: StripeEvent, route: Route, outcome: DeliveryOutcome) -> None:
    chain: List[Handler] = list(route.handlers)
    if route.observer is not None:
        chain.append(route.observer)

    for handler in chain:
        name = handler_name(handler)
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            failure = HandlerExecutionError(
                f"Handler {name} failed for {event.type}: {e}",
                handler_name=name,
                event_id=event.id,
                cause=e,
            )
            outcome.handler_errors.append(failure)
            log_event(
                "error",
                "webhook.handler_failed",
                event_id=event.id,
                event_type=event.type,
                error_code=failure.code,
                exc_info=True,
                extra={"handler": name},
            )


def _reject(outcome: DeliveryOutcome, error: Union[AuthenticationError, MalformedEventError]) -> DeliveryOutcome:
    outcome.error = error
    outcome.advance(DeliveryState.REJECTED)
    log_event("warning", "webhook.rejected", event_id=outcome.event_id, error_code=error.code, extra={"error": error.message})
    return outcome
