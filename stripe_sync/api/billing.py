"""
Billing API routes.

Read surface:
- GET   /api/billing/products: List products (?active=true for active only)
- GET   /api/billing/products/{id}: Product with its active prices
- GET   /api/billing/prices/lookup/{lookup_key}: Active price by lookup key
- GET   /api/billing/subscriptions/{id}: Subscription
- GET   /api/billing/users/{user_id}/subscriptions: Subscriptions owned by a user

Write surface (X-Admin-Key required):
- POST  /api/billing/checkout: Create checkout session
- POST  /api/billing/portal: Create portal session
- PATCH /api/billing/subscriptions/{id}/metadata: Caller-owned metadata
- POST  /api/billing/subscriptions/{id}/quantity: Seat quantity
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from stripe_sync.core.admin_auth import verify_admin_key
from stripe_sync.core.errors import NotFoundError
from stripe_sync.features.billing import queries
from stripe_sync.features.billing.provider import BillingProviderError, CheckoutSessionRequest
from stripe_sync.features.billing.service import (
    start_checkout,
    start_portal,
    update_subscription_metadata,
    update_subscription_quantity,
)


router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    mode: str = "subscription"
    success_url: str
    cancel_url: str
    price_id: Optional[str] = None
    quantity: int = 1
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    subscription_metadata: Optional[Dict[str, str]] = None
    payment_intent_metadata: Optional[Dict[str, str]] = None
    allow_promotion_codes: bool = False
    discounts: Optional[List[Dict[str, str]]] = None


class CheckoutResponse(BaseModel):
    """Response with checkout session."""
    session_id: str
    url: Optional[str]


class PortalRequest(BaseModel):
    """Request to create portal session."""
    customer_id: str
    return_url: str


class PortalResponse(BaseModel):
    """Response with portal URL."""
    url: str


class MetadataUpdateRequest(BaseModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)
    org_id: Optional[str] = None
    user_id: Optional[str] = None


class QuantityUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=1)


@router.get("/products")
async def get_products(active: bool = False) -> List[Dict[str, Any]]:
    if active:
        return queries.list_active_products()
    return queries.list_products()


@router.get("/products/{product_id}")
async def get_product(product_id: str) -> Dict[str, Any]:
    product = queries.get_product_with_prices(product_id)
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}")
    return product


@router.get("/prices/lookup/{lookup_key}")
async def get_price_by_lookup_key(lookup_key: str) -> Dict[str, Any]:
    price = queries.get_price_by_lookup_key(lookup_key)
    if price is None:
        raise NotFoundError(f"No active price with lookup key: {lookup_key}")
    return price


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str) -> Dict[str, Any]:
    subscription = queries.get_subscription(subscription_id)
    if subscription is None:
        raise NotFoundError(f"Subscription not found: {subscription_id}")
    return subscription


@router.get("/users/{user_id}/subscriptions")
async def get_user_subscriptions(user_id: str) -> List[Dict[str, Any]]:
    return queries.list_subscriptions_by_user_id(user_id)


@router.post("/checkout", response_model=CheckoutResponse, dependencies=[Depends(verify_admin_key)])
async def create_checkout(request: CheckoutRequest):
    """
    Create Stripe checkout session.
    
    Returns:
        {"session_id": "cs_...", "url": "https://checkout.stripe.com/..."}
    
    Errors:
        400: Invalid option combination (e.g. promotion codes with discounts)
        502: Stripe API error or Stripe not configured
    """
    session_request = CheckoutSessionRequest(
        mode=request.mode,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        price_id=request.price_id,
        quantity=request.quantity,
        customer_id=request.customer_id,
        metadata=request.metadata,
        subscription_metadata=request.subscription_metadata,
        payment_intent_metadata=request.payment_intent_metadata,
        allow_promotion_codes=request.allow_promotion_codes,
        discounts=request.discounts,
    )
    try:
        result = start_checkout(session_request, user_id=request.user_id, email=request.email)
    except BillingProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"session_id": result.session_id, "url": result.url}


@router.post("/portal", response_model=PortalResponse, dependencies=[Depends(verify_admin_key)])
async def create_portal(request: PortalRequest):
    """
    Create Stripe billing portal session.
    
    Errors:
        502: Stripe API error or Stripe not configured
    """
    try:
        url = start_portal(request.customer_id, request.return_url)
    except BillingProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"url": url}


@router.patch("/subscriptions/{subscription_id}/metadata", dependencies=[Depends(verify_admin_key)])
async def patch_subscription_metadata(subscription_id: str, request: MetadataUpdateRequest):
    update_subscription_metadata(
        subscription_id,
        request.metadata,
        org_id=request.org_id,
        user_id=request.user_id,
    )
    return {"ok": True, "subscription_id": subscription_id}


@router.post("/subscriptions/{subscription_id}/quantity", dependencies=[Depends(verify_admin_key)])
async def set_subscription_quantity(subscription_id: str, request: QuantityUpdateRequest):
    """
    Update seat quantity in Stripe, then locally.
    
    Errors:
        502: Stripe rejected the update (local record unchanged)
    """
    try:
        update_subscription_quantity(subscription_id, request.quantity)
    except BillingProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"ok": True, "subscription_id": subscription_id, "quantity": request.quantity}
