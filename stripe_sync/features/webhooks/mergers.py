"""
Resource mergers.

Pure functions mapping (existing local record or None, provider payload,
event created timestamp) to a MergeResult: insert, update or skip plus the
column values to write. No storage access happens here; see store.py.

Merge policy:
- No existing record: insert everything derived from the payload.
- Existing record: overwrite every payload-derived field. org_id/user_id are
  application-owned and never appear in merge output, so updates keep them.
- With the monotonic guard on, an event strictly older than the record's
  last_event_at is skipped. Equal timestamps apply.
- product.deleted / price.deleted set active=False instead of deleting.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from stripe_sync.core.errors import TierValidationError, UnknownResourceShapeError


INSERT = "insert"
UPDATE = "update"
SKIP = "skip"

# Upper bound of the final price tier. Never a number.
UNBOUNDED = "inf"

PRICE_TYPES = ("one_time", "recurring")
CHECKOUT_MODES = ("payment", "subscription", "setup")


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one payload into one record."""
    action: str
    external_id: str
    values: Dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------------
# Field extraction helpers
# ----------------------------------------------------------------------------

def _external_id(kind: str, payload: Mapping[str, Any]) -> str:
    value = payload.get("id")
    if not isinstance(value, str) or not value:
        raise UnknownResourceShapeError(f"{kind} payload has no id")
    return value


def _ref(value: Any) -> Optional[str]:
    """Resolve a reference that may be a bare id or an expanded object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, Mapping):
        inner = value.get("id")
        if isinstance(inner, str) and inner:
            return inner
    return None


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _metadata(payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    value = payload.get("metadata")
    return dict(value) if isinstance(value, Mapping) else None


def _require(kind: str, external_id: str, name: str, value: Any) -> Any:
    if value is None:
        raise UnknownResourceShapeError(f"{kind} {external_id} is missing '{name}'")
    return value


def _first_item(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    items = payload.get("items")
    if isinstance(items, Mapping):
        data = items.get("data")
        if isinstance(data, list) and data and isinstance(data[0], Mapping):
            return data[0]
    return {}


# ----------------------------------------------------------------------------
# Convergence
# ----------------------------------------------------------------------------

def is_stale(existing: Optional[Mapping[str, Any]], event_created: int) -> bool:
    """True when the record already reflects a strictly newer event."""
    if not existing:
        return False
    last = existing.get("last_event_at")
    return last is not None and event_created < last


def _converge(
    external_id: str,
    existing: Optional[Mapping[str, Any]],
    values: Dict[str, Any],
    event_created: int,
    monotonic: bool,
) -> MergeResult:
    if existing is None:
        return MergeResult(INSERT, external_id, {**values, "last_event_at": event_created})
    if monotonic and is_stale(existing, event_created):
        return MergeResult(SKIP, external_id)
    last = existing.get("last_event_at")
    stamp = event_created if last is None else max(last, event_created)
    return MergeResult(UPDATE, external_id, {**values, "last_event_at": stamp})


# ----------------------------------------------------------------------------
# Price tiers
# ----------------------------------------------------------------------------

def validate_tiers(tiers: List[Mapping[str, Any]]) -> None:
    """
    Check a normalized tier table.

    Raises:
        TierValidationError: If the list is empty, the final tier is bounded,
            a non-final tier is unbounded, or bounds are not strictly increasing
    """
    if not tiers:
        raise TierValidationError("Tier list must not be empty")
    last_index = len(tiers) - 1
    previous = 0
    for index, tier in enumerate(tiers):
        bound = tier.get("up_to")
        if index == last_index:
            if bound != UNBOUNDED:
                raise TierValidationError("Final tier must be unbounded")
            break
        if bound == UNBOUNDED:
            raise TierValidationError(f"Tier {index} is unbounded but is not the final tier")
        if isinstance(bound, bool) or not isinstance(bound, int) or bound <= previous:
            raise TierValidationError(f"Tier {index} upper bound must be an integer greater than {previous}")
        previous = bound


def normalize_tiers(raw: Any) -> Optional[List[Dict[str, Any]]]:
    """
    Normalize a provider tier table, preserving order.

    Accepts `up_to` or `upTo`; null or "inf" become UNBOUNDED.
    """
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise TierValidationError("Tiers must be a list")
    tiers = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise TierValidationError("Each tier must be an object")
        bound = entry["up_to"] if "up_to" in entry else entry.get("upTo")
        if bound is None or bound == UNBOUNDED:
            bound = UNBOUNDED
        flat = entry["flat_amount"] if "flat_amount" in entry else entry.get("flatAmount")
        unit = entry["unit_amount"] if "unit_amount" in entry else entry.get("unitAmount")
        tiers.append({
            "up_to": bound,
            "flat_amount": _opt_int(flat),
            "unit_amount": _opt_int(unit),
        })
    validate_tiers(tiers)
    return tiers


# ----------------------------------------------------------------------------
# Per-resource mergers
# ----------------------------------------------------------------------------

def merge_product(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("product", payload)
    name = _opt_str(payload.get("name"))

    if deleted and name is None:
        # Minimal deletion payload: only the soft-delete flag can be applied
        if existing is None:
            raise UnknownResourceShapeError(f"product {external_id} deleted before it was ever seen")
        return _converge(external_id, existing, {"active": False}, event_created, monotonic)

    values = {
        "name": _require("product", external_id, "name", name),
        "description": _opt_str(payload.get("description")),
        "active": False if deleted else bool(payload.get("active", True)),
        "type": _opt_str(payload.get("type")),
        "default_price_id": _ref(payload.get("default_price")),
        "metadata": _metadata(payload),
        "images": [i for i in payload.get("images") or [] if isinstance(i, str)] or None,
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def expanded_product(payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the product object when a price payload carries it expanded."""
    product = payload.get("product")
    if isinstance(product, Mapping) and _ref(product) and "name" in product:
        return dict(product)
    return None


def merge_price(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("price", payload)
    product_id = _require("price", external_id, "product", _ref(payload.get("product")))
    currency = _require("price", external_id, "currency", _opt_str(payload.get("currency")))
    price_type = _opt_str(payload.get("type"))
    if price_type not in PRICE_TYPES:
        raise UnknownResourceShapeError(f"price {external_id} has unknown type {price_type!r}")

    recurring = payload.get("recurring") if isinstance(payload.get("recurring"), Mapping) else {}
    try:
        tiers = normalize_tiers(payload.get("tiers"))
    except TierValidationError as e:
        raise UnknownResourceShapeError(f"price {external_id} has invalid tiers: {e.message}")

    values = {
        "stripe_product_id": product_id,
        "active": False if deleted else bool(payload.get("active", True)),
        "currency": currency.lower(),
        "type": price_type,
        "unit_amount": _opt_int(payload.get("unit_amount")),
        "description": _opt_str(payload.get("nickname")),
        "lookup_key": _opt_str(payload.get("lookup_key")),
        "recurring_interval": _opt_str(recurring.get("interval")),
        "recurring_interval_count": _opt_int(recurring.get("interval_count")),
        "trial_period_days": _opt_int(recurring.get("trial_period_days")),
        "usage_type": _opt_str(recurring.get("usage_type")),
        "billing_scheme": _opt_str(payload.get("billing_scheme")),
        "tiers_mode": _opt_str(payload.get("tiers_mode")),
        "tiers": tiers,
        "metadata": _metadata(payload),
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def merge_customer(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("customer", payload)
    values = {
        "email": _opt_str(payload.get("email")),
        "name": _opt_str(payload.get("name")),
        "metadata": _metadata(payload),
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def merge_subscription(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("subscription", payload)
    item = _first_item(payload)
    price_id = _ref(item.get("price")) or _ref(payload.get("plan"))

    period_end = _opt_int(payload.get("current_period_end"))
    if period_end is None:
        # Newer API versions report the period on the subscription item
        period_end = _opt_int(item.get("current_period_end"))
    quantity = _opt_int(payload.get("quantity"))
    if quantity is None:
        quantity = _opt_int(item.get("quantity"))

    values = {
        "stripe_customer_id": _require("subscription", external_id, "customer", _ref(payload.get("customer"))),
        "status": _require("subscription", external_id, "status", _opt_str(payload.get("status"))),
        "current_period_end": period_end,
        "cancel_at_period_end": bool(payload.get("cancel_at_period_end", False)),
        "cancel_at": _opt_int(payload.get("cancel_at")),
        "quantity": quantity,
        "price_id": _require("subscription", external_id, "price", price_id),
        "metadata": _metadata(payload),
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def merge_checkout_session(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("checkout session", payload)
    mode = _opt_str(payload.get("mode"))
    if mode not in CHECKOUT_MODES:
        raise UnknownResourceShapeError(f"checkout session {external_id} has unknown mode {mode!r}")
    values = {
        "stripe_customer_id": _ref(payload.get("customer")),
        "status": _require("checkout session", external_id, "status", _opt_str(payload.get("status"))),
        "mode": mode,
        "metadata": _metadata(payload),
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def merge_payment(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("payment", payload)
    currency = _require("payment", external_id, "currency", _opt_str(payload.get("currency")))
    created = _opt_int(payload.get("created"))
    values = {
        "stripe_customer_id": _ref(payload.get("customer")),
        "amount": _require("payment", external_id, "amount", _opt_int(payload.get("amount"))),
        "currency": currency.lower(),
        "status": _require("payment", external_id, "status", _opt_str(payload.get("status"))),
        "created": created if created is not None else event_created,
        "metadata": _metadata(payload),
    }
    return _converge(external_id, existing, values, event_created, monotonic)


def merge_invoice(existing, payload, event_created, *, deleted=False, monotonic=True) -> MergeResult:
    external_id = _external_id("invoice", payload)
    subscription_id = _ref(payload.get("subscription"))
    if subscription_id is None:
        parent = payload.get("parent") if isinstance(payload.get("parent"), Mapping) else {}
        details = parent.get("subscription_details") if isinstance(parent.get("subscription_details"), Mapping) else {}
        subscription_id = _ref(details.get("subscription"))
    created = _opt_int(payload.get("created"))
    values = {
        "stripe_customer_id": _require("invoice", external_id, "customer", _ref(payload.get("customer"))),
        "stripe_subscription_id": subscription_id,
        "status": _require("invoice", external_id, "status", _opt_str(payload.get("status"))),
        "amount_due": _require("invoice", external_id, "amount_due", _opt_int(payload.get("amount_due"))),
        "amount_paid": _require("invoice", external_id, "amount_paid", _opt_int(payload.get("amount_paid"))),
        "created": created if created is not None else event_created,
    }
    return _converge(external_id, existing, values, event_created, monotonic)


Merger = Callable[..., MergeResult]

MERGERS: Dict[str, Merger] = {
    "product": merge_product,
    "price": merge_price,
    "customer": merge_customer,
    "subscription": merge_subscription,
    "checkout_session": merge_checkout_session,
    "payment": merge_payment,
    "invoice": merge_invoice,
}
