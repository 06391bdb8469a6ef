"""
Dispatch routing for webhook events.

Maps an event type to the resource kind it updates (or no-op) and to the
handler chain that runs after the merge: handlers registered for that exact
type in registration order, then the optional catch-all observer.

The type table is total: unknown or future event types route to a no-op
merge and only the catch-all observer runs.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from stripe_sync.features.webhooks.envelope import StripeEvent


logger = logging.getLogger("stripe_sync.webhooks")

Handler = Callable[[StripeEvent], Union[Awaitable[None], None]]


# Event type -> resource kind whose local record the event updates
EVENT_RESOURCES: Dict[str, str] = {
    "product.created": "product",
    "product.updated": "product",
    "product.deleted": "product",
    "price.created": "price",
    "price.updated": "price",
    "price.deleted": "price",
    "customer.created": "customer",
    "customer.updated": "customer",
    "customer.deleted": "customer",
    "customer.subscription.created": "subscription",
    "customer.subscription.updated": "subscription",
    "customer.subscription.deleted": "subscription",
    "customer.subscription.paused": "subscription",
    "customer.subscription.resumed": "subscription",
    "customer.subscription.pending_update_applied": "subscription",
    "customer.subscription.pending_update_expired": "subscription",
    "customer.subscription.trial_will_end": "subscription",
    "checkout.session.completed": "checkout_session",
    "checkout.session.expired": "checkout_session",
    "checkout.session.async_payment_succeeded": "checkout_session",
    "checkout.session.async_payment_failed": "checkout_session",
    "payment_intent.created": "payment",
    "payment_intent.processing": "payment",
    "payment_intent.requires_action": "payment",
    "payment_intent.succeeded": "payment",
    "payment_intent.payment_failed": "payment",
    "payment_intent.canceled": "payment",
    "payment_intent.amount_capturable_updated": "payment",
    "payment_intent.partially_funded": "payment",
    "invoice.created": "invoice",
    "invoice.updated": "invoice",
    "invoice.deleted": "invoice",
    "invoice.finalized": "invoice",
    "invoice.paid": "invoice",
    "invoice.payment_succeeded": "invoice",
    "invoice.payment_failed": "invoice",
    "invoice.payment_action_required": "invoice",
    "invoice.marked_uncollectible": "invoice",
    "invoice.voided": "invoice",
}

# Resource kinds whose *.deleted event is a soft delete (active=False)
SOFT_DELETE_RESOURCES = {"product", "price"}


@dataclass(frozen=True)
class Route:
    """Everything the sequencer needs to process one event type."""
    event_type: str
    resource: Optional[str]  # None means no-op merge
    deleted: bool
    handlers: Tuple[Handler, ...]
    observer: Optional[Handler]

    @property
    def is_noop(self) -> bool:
        return self.resource is None


def resource_for(event_type: str) -> Optional[str]:
    return EVENT_RESOURCES.get(event_type)


class HandlerRegistry:
    """
    Caller-supplied handlers, built once at application startup.

    Usage:
        registry = HandlerRegistry(
            {"customer.subscription.updated": notify_billing_team},
            on_event=audit_every_event,
        )
    """

    def __init__(
        self,
        handlers: Optional[Mapping[str, Union[Handler, Sequence[Handler]]]] = None,
        on_event: Optional[Handler] = None,
    ):
        self._handlers: Dict[str, List[Handler]] = {}
        self.on_event = on_event
        for event_type, value in (handlers or {}).items():
            if callable(value):
                self.register(event_type, value)
            else:
                for handler in value:
                    self.register(event_type, handler)

    def register(self, event_type: str, handler: Handler) -> None:
        if not callable(handler):
            raise TypeError(f"Handler for {event_type} is not callable")
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event_type: str) -> Tuple[Handler, ...]:
        return tuple(self._handlers.get(event_type, ()))

    @property
    def event_types(self) -> List[str]:
        return sorted(self._handlers)

    def route(self, event_type: str) -> Route:
        resource = resource_for(event_type)
        if resource is None:
            logger.info("No local merge for event type %s", event_type)
        return Route(
            event_type=event_type,
            resource=resource,
            deleted=resource in SOFT_DELETE_RESOURCES and event_type.endswith(".deleted"),
            handlers=self.handlers_for(event_type),
            observer=self.on_event,
        )


def handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None) or repr(handler)
