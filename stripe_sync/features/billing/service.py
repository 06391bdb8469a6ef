"""
Billing service orchestrator.

Application-facing writes that sit beside the webhook pipeline:
- Caller-owned metadata on subscriptions, payments and invoices
- Seat quantity changes (remote first, then local)
- Customer creation and checkout / portal sessions

Provider-owned fields are only ever written by the webhook mergers. Nothing
here touches last_event_at, so a later webhook still converges the record.

All Stripe-specific code is in stripe_provider.py.
"""
import logging
from dataclasses import replace
from typing import Optional, Dict, Any

from sqlalchemy import select, insert, update

from stripe_sync.core.database import (
    get_db_session,
    stripe_customers,
    stripe_subscriptions,
    stripe_payments,
    stripe_invoices,
)
from stripe_sync.core.errors import NotFoundError, ValidationError
from stripe_sync.features.billing.provider import (
    BillingProvider,
    CheckoutSessionRequest,
    CheckoutSessionResult,
)
from stripe_sync.features.billing import queries
from stripe_sync.features.billing.stripe_provider import StripeProvider


logger = logging.getLogger("stripe_sync.billing")


def get_provider() -> BillingProvider:
    """
    Get the billing provider.

    Raises:
        BillingProviderError: If STRIPE_SECRET_KEY is not set
    """
    return StripeProvider()


def _set_owner(table, key_column, external_id: str, kind: str, values: Dict[str, Any]) -> None:
    with get_db_session() as session:
        updated = session.execute(
            update(table).where(key_column == external_id).values(**values)
        )
        if not updated.rowcount:
            raise NotFoundError(f"{kind} not found: {external_id}")


def update_subscription_metadata(
    stripe_subscription_id: str,
    metadata: Dict[str, Any],
    org_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """
    Attach caller-owned metadata and ownership to a subscription.

    org_id and user_id are written as given, so passing None clears them.
    Later webhook events for this subscription leave them untouched.

    Raises:
        NotFoundError: If the subscription has not been synced yet
    """
    _set_owner(
        stripe_subscriptions,
        stripe_subscriptions.c.stripe_subscription_id,
        stripe_subscription_id,
        "Subscription",
        {"metadata": metadata, "org_id": org_id, "user_id": user_id},
    )


def update_payment_owner(
    stripe_payment_intent_id: str,
    org_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Set the caller-owned org/user on a synced payment."""
    _set_owner(
        stripe_payments,
        stripe_payments.c.stripe_payment_intent_id,
        stripe_payment_intent_id,
        "Payment",
        {"org_id": org_id, "user_id": user_id},
    )


def update_invoice_owner(
    stripe_invoice_id: str,
    org_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Set the caller-owned org/user on a synced invoice."""
    _set_owner(
        stripe_invoices,
        stripe_invoices.c.stripe_invoice_id,
        stripe_invoice_id,
        "Invoice",
        {"org_id": org_id, "user_id": user_id},
    )


def update_subscription_quantity(
    stripe_subscription_id: str,
    quantity: int,
    provider: Optional[BillingProvider] = None,
) -> None:
    """
    Change the seat quantity of a subscription.

    The provider is updated first. The local record is only written once the
    remote call succeeded, so a failure leaves both sides unchanged. A
    subscription not yet synced locally is skipped; the upcoming
    customer.subscription.updated webhook creates it.

    Raises:
        ValidationError: If quantity is not a positive integer
        BillingProviderError: If the remote update fails
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer")

    provider = provider or get_provider()
    provider.update_subscription_quantity(stripe_subscription_id, quantity)

    with get_db_session() as session:
        updated = session.execute(
            update(stripe_subscriptions)
            .where(stripe_subscriptions.c.stripe_subscription_id == stripe_subscription_id)
            .values(quantity=quantity)
        )
        if not updated.rowcount:
            logger.warning(
                "Subscription %s not synced locally; quantity left to the next webhook",
                stripe_subscription_id,
            )


def create_or_update_customer(
    stripe_customer_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Record a customer created through the provider client.

    email, name and metadata are written as given on every call, so None
    clears a field.
    """
    values = {"email": email, "name": name, "metadata": metadata}

    with get_db_session() as session:
        existing = session.execute(
            select(stripe_customers.c.id).where(
                stripe_customers.c.stripe_customer_id == stripe_customer_id
            )
        ).fetchone()

        if existing:
            session.execute(
                update(stripe_customers)
                .where(stripe_customers.c.stripe_customer_id == stripe_customer_id)
                .values(**values)
            )
        else:
            session.execute(
                insert(stripe_customers).values(stripe_customer_id=stripe_customer_id, **values)
            )

    return stripe_customer_id


def ensure_customer_for_user(
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> str:
    """
    Ensure a provider customer exists for the user and record it locally.

    Returns:
        Stripe customer ID

    Raises:
        BillingProviderError: If customer lookup or creation fails
    """
    provider = provider or get_provider()
    stripe_customer_id = provider.get_or_create_customer(user_id, email, name)

    # Keep what the customer webhooks already synced
    current = queries.get_customer(stripe_customer_id) or {}
    metadata = dict(current.get("metadata") or {})
    metadata["user_id"] = user_id
    return create_or_update_customer(
        stripe_customer_id,
        email=email or current.get("email"),
        name=name or current.get("name"),
        metadata=metadata,
    )


def start_checkout(
    request: CheckoutSessionRequest,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> CheckoutSessionResult:
    """
    Start a hosted checkout session.

    The request is validated before any remote or local write. When no
    customer is given but a user_id is, the user's customer is ensured first.

    Raises:
        CallerConfigurationError: If the request options are invalid
        BillingProviderError: If the provider rejects the call
    """
    request.validate()

    provider = provider or get_provider()
    if not request.customer_id and user_id:
        customer_id = ensure_customer_for_user(user_id, email=email, provider=provider)
        request = replace(request, customer_id=customer_id)

    result = provider.create_checkout_session(request)
    logger.info("Checkout session %s created (mode=%s)", result.session_id, request.mode)
    return result


def start_portal(
    stripe_customer_id: str,
    return_url: str,
    provider: Optional[BillingProvider] = None,
) -> str:
    """
    Start billing portal session for customer self-service.

    Returns:
        Portal URL

    Raises:
        BillingProviderError: If portal creation fails
    """
    provider = provider or get_provider()
    return provider.create_portal_session(
        customer_id=stripe_customer_id,
        return_url=return_url,
    )
