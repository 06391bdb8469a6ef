"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
"""
import os
from typing import Dict, Any, Optional
import stripe

from stripe_sync.core.config import settings
from stripe_sync.features.billing.provider import (
    BillingProviderError,
    CheckoutSessionRequest,
    CheckoutSessionResult,
)


def _quote_search_value(value: str) -> str:
    """Escape a value for a single-quoted Stripe search string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""
    
    def __init__(self, secret_key: Optional[str] = None):
        """
        Initialize Stripe provider.
        
        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY or os.getenv("STRIPE_SECRET_KEY")
        
        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY environment variable is not set")
        
        stripe.api_key = self.secret_key
    
    def get_or_create_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Find the Stripe customer tagged with user_id, or create one."""
        try:
            query = f"metadata['user_id']:'{_quote_search_value(user_id)}'"
            found = stripe.Customer.search(query=query, limit=1)
            if found.data:
                return found.data[0].id
            
            customer_data: Dict[str, Any] = {
                "metadata": {"user_id": user_id}
            }
            if email:
                customer_data["email"] = email
            if name:
                customer_data["name"] = name
            
            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")
    
    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResult:
        """Create Stripe checkout session."""
        request.validate()

        params: Dict[str, Any] = {
            "mode": request.mode,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata or {},
        }
        if request.price_id:
            params["line_items"] = [{"price": request.price_id, "quantity": request.quantity}]
        if request.customer_id:
            params["customer"] = request.customer_id
        if request.subscription_metadata:
            params["subscription_data"] = {"metadata": request.subscription_metadata}
        if request.payment_intent_metadata:
            params["payment_intent_data"] = {"metadata": request.payment_intent_metadata}
        if request.allow_promotion_codes:
            params["allow_promotion_codes"] = True
        if request.discounts:
            params["discounts"] = request.discounts

        try:
            session = stripe.checkout.Session.create(**params)
            return CheckoutSessionResult(session_id=session.id, url=session.url)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
    
    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")

    def update_subscription_quantity(self, subscription_id: str, quantity: int) -> None:
        """Update the quantity of the subscription's first item."""
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            items = subscription["items"]["data"]
            if not items:
                raise BillingProviderError("Subscription has no items")
            stripe.SubscriptionItem.modify(items[0]["id"], quantity=quantity)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription quantity update failed: {e}")
