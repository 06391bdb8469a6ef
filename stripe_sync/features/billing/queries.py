"""
Read-side queries over synced Stripe records.

Results are plain dicts without the local row id, timestamps or
last_event_at. Price references may dangle: a price whose product has not
been synced yet is returned as-is.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, and_, desc, select

from stripe_sync.core.database import (
    get_db_session,
    stripe_checkout_sessions,
    stripe_customers,
    stripe_invoices,
    stripe_payments,
    stripe_prices,
    stripe_products,
    stripe_subscriptions,
)


INTERNAL_COLUMNS = ("id", "created_at", "updated_at", "last_event_at")


def _public(row) -> Dict[str, Any]:
    data = dict(row._mapping)
    for column in INTERNAL_COLUMNS:
        data.pop(column, None)
    return data


def _fetch_one(table: Table, *criteria) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(select(table).where(*criteria)).fetchone()
    return _public(row) if row else None


def _fetch_all(table: Table, *criteria, order_by=None) -> List[Dict[str, Any]]:
    query = select(table)
    if criteria:
        query = query.where(and_(*criteria))
    query = query.order_by(order_by if order_by is not None else table.c.id)
    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [_public(r) for r in rows]


# Products

def get_product(stripe_product_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(stripe_products, stripe_products.c.stripe_product_id == stripe_product_id)


def list_products() -> List[Dict[str, Any]]:
    return _fetch_all(stripe_products)


def list_active_products() -> List[Dict[str, Any]]:
    return _fetch_all(stripe_products, stripe_products.c.active.is_(True))


def get_product_with_prices(stripe_product_id: str) -> Optional[Dict[str, Any]]:
    """Product plus its active prices, or None if the product is unknown."""
    product = get_product(stripe_product_id)
    if product is None:
        return None
    product["prices"] = list_active_prices_by_product(stripe_product_id)
    return product


# Prices

def get_price(stripe_price_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(stripe_prices, stripe_prices.c.stripe_price_id == stripe_price_id)


def list_prices() -> List[Dict[str, Any]]:
    return _fetch_all(stripe_prices)


def list_active_prices() -> List[Dict[str, Any]]:
    return _fetch_all(stripe_prices, stripe_prices.c.active.is_(True))


def list_prices_by_product(stripe_product_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_prices, stripe_prices.c.stripe_product_id == stripe_product_id)


def list_active_prices_by_product(stripe_product_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(
        stripe_prices,
        stripe_prices.c.stripe_product_id == stripe_product_id,
        stripe_prices.c.active.is_(True),
    )


def get_price_by_lookup_key(lookup_key: str) -> Optional[Dict[str, Any]]:
    """Active price carrying this lookup key."""
    return _fetch_one(
        stripe_prices,
        stripe_prices.c.lookup_key == lookup_key,
        stripe_prices.c.active.is_(True),
    )


# Customers

def get_customer(stripe_customer_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(stripe_customers, stripe_customers.c.stripe_customer_id == stripe_customer_id)


# Subscriptions

def get_subscription(stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(
        stripe_subscriptions,
        stripe_subscriptions.c.stripe_subscription_id == stripe_subscription_id,
    )


def list_subscriptions(stripe_customer_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_subscriptions, stripe_subscriptions.c.stripe_customer_id == stripe_customer_id)


def get_subscription_by_org_id(org_id: str) -> Optional[Dict[str, Any]]:
    """Most recently created subscription attached to the org."""
    with get_db_session() as session:
        row = session.execute(
            select(stripe_subscriptions)
            .where(stripe_subscriptions.c.org_id == org_id)
            .order_by(desc(stripe_subscriptions.c.id))
            .limit(1)
        ).fetchone()
    return _public(row) if row else None


def list_subscriptions_by_user_id(user_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_subscriptions, stripe_subscriptions.c.user_id == user_id)


# Checkout sessions

def get_checkout_session(stripe_checkout_session_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(
        stripe_checkout_sessions,
        stripe_checkout_sessions.c.stripe_checkout_session_id == stripe_checkout_session_id,
    )


# Payments (newest first)

def get_payment(stripe_payment_intent_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one(stripe_payments, stripe_payments.c.stripe_payment_intent_id == stripe_payment_intent_id)


def list_payments(stripe_customer_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(
        stripe_payments,
        stripe_payments.c.stripe_customer_id == stripe_customer_id,
        order_by=desc(stripe_payments.c.created),
    )


def list_payments_by_user_id(user_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_payments, stripe_payments.c.user_id == user_id, order_by=desc(stripe_payments.c.created))


def list_payments_by_org_id(org_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_payments, stripe_payments.c.org_id == org_id, order_by=desc(stripe_payments.c.created))


# Invoices (newest first)

def list_invoices(stripe_customer_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(
        stripe_invoices,
        stripe_invoices.c.stripe_customer_id == stripe_customer_id,
        order_by=desc(stripe_invoices.c.created),
    )


def list_invoices_by_org_id(org_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_invoices, stripe_invoices.c.org_id == org_id, order_by=desc(stripe_invoices.c.created))


def list_invoices_by_user_id(user_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(stripe_invoices, stripe_invoices.c.user_id == user_id, order_by=desc(stripe_invoices.c.created))
