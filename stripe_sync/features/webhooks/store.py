"""
Transactional application of merge results.

Reads the existing row for the payload's external id (locked for update where
the database supports it), runs the pure merger and writes the outcome within
the caller's session. The caller owns the transaction boundary.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import Table, insert, select, update
from sqlalchemy.orm import Session

from stripe_sync.core.database import (
    stripe_checkout_sessions,
    stripe_customers,
    stripe_invoices,
    stripe_payments,
    stripe_prices,
    stripe_products,
    stripe_subscriptions,
)
from stripe_sync.features.webhooks.mergers import (
    INSERT,
    MERGERS,
    SKIP,
    MergeResult,
    expanded_product,
)


@dataclass(frozen=True)
class ResourceTable:
    table: Table
    key: str  # external-id column


RESOURCE_TABLES: Dict[str, ResourceTable] = {
    "product": ResourceTable(stripe_products, "stripe_product_id"),
    "price": ResourceTable(stripe_prices, "stripe_price_id"),
    "customer": ResourceTable(stripe_customers, "stripe_customer_id"),
    "subscription": ResourceTable(stripe_subscriptions, "stripe_subscription_id"),
    "checkout_session": ResourceTable(stripe_checkout_sessions, "stripe_checkout_session_id"),
    "payment": ResourceTable(stripe_payments, "stripe_payment_intent_id"),
    "invoice": ResourceTable(stripe_invoices, "stripe_invoice_id"),
}


def load_record(session: Session, resource: str, external_id: str, *, lock: bool = False) -> Optional[Dict[str, Any]]:
    """Fetch one row by external id as a plain dict."""
    target = RESOURCE_TABLES[resource]
    query = select(target.table).where(target.table.c[target.key] == external_id)
    if lock:
        query = query.with_for_update()
    row = session.execute(query).fetchone()
    return dict(row._mapping) if row else None


def apply_merge(
    session: Session,
    resource: str,
    payload: Dict[str, Any],
    event_created: int,
    *,
    deleted: bool = False,
    monotonic: bool = True,
) -> MergeResult:
    """
    Merge one provider payload into local storage.

    Raises:
        UnknownResourceShapeError: If the payload lacks required fields
    """
    if resource == "price":
        product = expanded_product(payload)
        if product is not None:
            apply_merge(session, "product", product, event_created, monotonic=monotonic)

    target = RESOURCE_TABLES[resource]
    merger = MERGERS[resource]

    external_id = payload.get("id")
    existing = load_record(session, resource, external_id, lock=True) if isinstance(external_id, str) else None
    result = merger(existing, payload, event_created, deleted=deleted, monotonic=monotonic)

    if result.action == SKIP:
        return result
    if result.action == INSERT:
        session.execute(
            insert(target.table).values({target.key: result.external_id, **result.values})
        )
    else:
        session.execute(
            update(target.table)
            .where(target.table.c[target.key] == result.external_id)
            .values(result.values)
        )
    return result
