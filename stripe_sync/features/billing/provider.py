"""
Billing provider protocol.

Defines the interface for the outbound provider client (Stripe, etc.).
The webhook core never calls it; application-facing services do, and the
resulting provider state flows back through webhooks.
"""
from typing import Protocol, Dict, List, Optional
from dataclasses import dataclass

from stripe_sync.core.errors import CallerConfigurationError
from stripe_sync.features.webhooks.mergers import CHECKOUT_MODES


@dataclass(frozen=True)
class CheckoutSessionRequest:
    """Options for a hosted checkout session."""
    mode: str
    success_url: str
    cancel_url: str
    price_id: Optional[str] = None
    quantity: int = 1
    customer_id: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    # Copied onto the subscription / payment intent the session creates
    subscription_metadata: Optional[Dict[str, str]] = None
    payment_intent_metadata: Optional[Dict[str, str]] = None
    allow_promotion_codes: bool = False
    discounts: Optional[List[Dict[str, str]]] = None

    def validate(self) -> None:
        """
        Reject option combinations the provider would refuse.

        Raises:
            CallerConfigurationError: On any invalid combination
        """
        if self.mode not in CHECKOUT_MODES:
            raise CallerConfigurationError(f"Unknown checkout mode: {self.mode}")
        if self.allow_promotion_codes and self.discounts:
            raise CallerConfigurationError("Cannot use both allowPromotionCodes and discounts")
        if self.mode != "setup" and not self.price_id:
            raise CallerConfigurationError(f"price_id is required for {self.mode} checkout")
        if self.quantity < 1:
            raise CallerConfigurationError("quantity must be at least 1")
        if self.subscription_metadata and self.mode != "subscription":
            raise CallerConfigurationError("subscription_metadata requires subscription mode")
        if self.payment_intent_metadata and self.mode != "payment":
            raise CallerConfigurationError("payment_intent_metadata requires payment mode")

@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: Optional[str]

class BillingProvider(Protocol):
    """
    Protocol for billing providers.
    
    Implementations must handle:
    - Customer lookup/creation
    - Checkout session creation
    - Portal session creation
    - Subscription seat quantity changes
    """
    
    def get_or_create_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """
        Find the provider customer tagged with this user id, or create one.
        
        Returns:
            Provider customer ID (e.g., Stripe customer ID)
        
        Raises:
            BillingProviderError: If lookup or creation fails
        """
        ...
    
    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResult:
        """
        Create a hosted checkout session.
        
        Raises:
            CallerConfigurationError: If the request options are invalid
            BillingProviderError: If session creation fails
        """
        ...
    
    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.
        
        Returns:
            Portal session URL
        
        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def update_subscription_quantity(self, subscription_id: str, quantity: int) -> None:
        """
        Set the seat quantity on the subscription's first item.

        Raises:
            BillingProviderError: If the remote update fails
        """
        ...

class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass
