"""Tests for the pure resource mergers and tier handling."""

import pytest

from stripe_sync.core.errors import TierValidationError, UnknownResourceShapeError
from stripe_sync.features.webhooks.mergers import (
    INSERT,
    SKIP,
    UNBOUNDED,
    UPDATE,
    is_stale,
    merge_checkout_session,
    merge_customer,
    merge_invoice,
    merge_payment,
    merge_price,
    merge_product,
    merge_subscription,
    normalize_tiers,
    validate_tiers,
)
from stripe_sync.tests import factories


T0 = 1_700_000_000


# ----------------------------------------------------------------------------
# Guard
# ----------------------------------------------------------------------------

def test_is_stale_only_for_strictly_older_events():
    assert is_stale(None, T0) is False
    assert is_stale({"last_event_at": None}, T0) is False
    assert is_stale({"last_event_at": T0}, T0) is False
    assert is_stale({"last_event_at": T0}, T0 - 1) is True
    assert is_stale({"last_event_at": T0}, T0 + 1) is False


def test_older_event_is_skipped_with_guard():
    result = merge_product({"last_event_at": T0}, factories.product(name="Old"), T0 - 10)
    assert result.action == SKIP
    assert result.values == {}


def test_older_event_applies_without_guard():
    result = merge_product({"last_event_at": T0}, factories.product(name="Old"), T0 - 10, monotonic=False)
    assert result.action == UPDATE
    assert result.values["name"] == "Old"
    # last_event_at never moves backwards
    assert result.values["last_event_at"] == T0


def test_equal_timestamp_applies():
    result = merge_product({"last_event_at": T0}, factories.product(name="Same"), T0)
    assert result.action == UPDATE
    assert result.values["name"] == "Same"


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------

def test_product_insert():
    result = merge_product(None, factories.product(images=["https://img/1.png"]), T0)
    assert result.action == INSERT
    assert result.external_id == "prod_basic"
    assert result.values["name"] == "Basic"
    assert result.values["active"] is True
    assert result.values["metadata"] == {"tier": "basic"}
    assert result.values["images"] == ["https://img/1.png"]
    assert result.values["last_event_at"] == T0


def test_product_default_price_may_be_expanded():
    result = merge_product(None, factories.product(default_price={"id": "price_1", "object": "price"}), T0)
    assert result.values["default_price_id"] == "price_1"


def test_product_without_name_is_rejected():
    payload = factories.product()
    del payload["name"]
    with pytest.raises(UnknownResourceShapeError):
        merge_product(None, payload, T0)


def test_product_deleted_full_payload_soft_deletes():
    result = merge_product({"last_event_at": T0}, factories.product(active=True), T0 + 1, deleted=True)
    assert result.action == UPDATE
    assert result.values["active"] is False


def test_product_deleted_minimal_payload_only_flips_active():
    result = merge_product({"last_event_at": T0}, {"id": "prod_basic", "deleted": True}, T0 + 1, deleted=True)
    assert result.values == {"active": False, "last_event_at": T0 + 1}


def test_product_deleted_minimal_payload_for_unknown_record():
    with pytest.raises(UnknownResourceShapeError):
        merge_product(None, {"id": "prod_x", "deleted": True}, T0, deleted=True)


def test_never_writes_caller_owned_fields():
    existing = {"last_event_at": T0, "org_id": "org_1", "user_id": "user_1"}
    payload = factories.subscription(metadata={"org_id": "spoofed"})
    payload["org_id"] = "spoofed"
    result = merge_subscription(existing, payload, T0 + 1)
    assert "org_id" not in result.values
    assert "user_id" not in result.values


def test_missing_id_is_rejected():
    payload = factories.customer()
    del payload["id"]
    with pytest.raises(UnknownResourceShapeError):
        merge_customer(None, payload, T0)


# ----------------------------------------------------------------------------
# Prices
# ----------------------------------------------------------------------------

def test_price_insert_with_recurring_fields():
    result = merge_price(None, factories.price(currency="USD"), T0)
    assert result.action == INSERT
    values = result.values
    assert values["stripe_product_id"] == "prod_basic"
    assert values["currency"] == "usd"
    assert values["type"] == "recurring"
    assert values["unit_amount"] == 1000
    assert values["description"] == "Monthly"
    assert values["lookup_key"] == "basic_monthly"
    assert values["recurring_interval"] == "month"
    assert values["recurring_interval_count"] == 1
    assert values["usage_type"] == "licensed"
    assert values["tiers"] is None


def test_price_with_expanded_product_reference():
    result = merge_price(None, factories.price(product_id={"id": "prod_basic", "name": "Basic"}), T0)
    assert result.values["stripe_product_id"] == "prod_basic"


def test_price_unknown_type_is_rejected():
    with pytest.raises(UnknownResourceShapeError):
        merge_price(None, factories.price(type="metered"), T0)


def test_price_without_product_is_rejected():
    with pytest.raises(UnknownResourceShapeError):
        merge_price(None, factories.price(product_id=None), T0)


def test_price_deleted_soft_deletes():
    result = merge_price({"last_event_at": T0}, factories.price(), T0 + 5, deleted=True)
    assert result.values["active"] is False


def test_price_tiers_are_normalized():
    payload = factories.price(
        billing_scheme="tiered",
        tiers_mode="graduated",
        unit_amount=None,
        tiers=[
            {"up_to": 10, "unit_amount": 500, "flat_amount": None},
            {"up_to": None, "unit_amount": 400, "flat_amount": 100},
        ],
    )
    result = merge_price(None, payload, T0)
    assert result.values["tiers"] == [
        {"up_to": 10, "flat_amount": None, "unit_amount": 500},
        {"up_to": UNBOUNDED, "flat_amount": 100, "unit_amount": 400},
    ]
    assert result.values["tiers_mode"] == "graduated"


def test_price_with_invalid_tiers_is_rejected():
    payload = factories.price(tiers=[{"up_to": 10, "unit_amount": 500}])
    with pytest.raises(UnknownResourceShapeError):
        merge_price(None, payload, T0)


# ----------------------------------------------------------------------------
# Tiers
# ----------------------------------------------------------------------------

def test_normalize_accepts_camel_case_keys():
    tiers = normalize_tiers([
        {"upTo": 5, "unitAmount": 100},
        {"upTo": "inf", "flatAmount": 50},
    ])
    assert tiers == [
        {"up_to": 5, "flat_amount": None, "unit_amount": 100},
        {"up_to": UNBOUNDED, "flat_amount": 50, "unit_amount": None},
    ]


def test_normalize_none_is_none():
    assert normalize_tiers(None) is None


@pytest.mark.parametrize(
    "tiers",
    [
        [],
        [{"up_to": 10}],
        [{"up_to": UNBOUNDED}, {"up_to": UNBOUNDED}],
        [{"up_to": 10}, {"up_to": 10}, {"up_to": UNBOUNDED}],
        [{"up_to": 10}, {"up_to": 5}, {"up_to": UNBOUNDED}],
        [{"up_to": 0}, {"up_to": UNBOUNDED}],
        [{"up_to": True}, {"up_to": UNBOUNDED}],
    ],
)
def test_validate_tiers_rejects(tiers):
    with pytest.raises(TierValidationError) as exc:
        validate_tiers(tiers)
    assert exc.value.code == "invalid_tiers"


def test_validate_tiers_accepts_single_unbounded_tier():
    validate_tiers([{"up_to": UNBOUNDED}])


def test_normalize_rejects_non_list():
    with pytest.raises(TierValidationError):
        normalize_tiers({"up_to": 10})


# ----------------------------------------------------------------------------
# Other resources
# ----------------------------------------------------------------------------

def test_customer_insert():
    result = merge_customer(None, factories.customer(), T0)
    assert result.values["email"] == "alice@example.com"
    assert result.values["metadata"] == {"user_id": "user_alice"}


def test_subscription_fields_from_first_item():
    result = merge_subscription(None, factories.subscription(), T0)
    values = result.values
    assert values["stripe_customer_id"] == "cus_alice"
    assert values["status"] == "active"
    assert values["price_id"] == "price_basic_monthly"
    assert values["quantity"] == 1
    assert values["current_period_end"] == 1_702_592_000
    assert values["cancel_at_period_end"] is False


def test_subscription_period_end_falls_back_to_item():
    payload = factories.subscription(current_period_end=None, quantity=None)
    payload["items"]["data"][0]["current_period_end"] = 1_705_000_000
    payload["items"]["data"][0]["quantity"] = 3
    values = merge_subscription(None, payload, T0).values
    assert values["current_period_end"] == 1_705_000_000
    assert values["quantity"] == 3


def test_subscription_price_from_legacy_plan():
    payload = factories.subscription(items={"data": []}, plan={"id": "plan_legacy"})
    assert merge_subscription(None, payload, T0).values["price_id"] == "plan_legacy"


def test_subscription_without_price_is_rejected():
    payload = factories.subscription(items={"data": []})
    with pytest.raises(UnknownResourceShapeError):
        merge_subscription(None, payload, T0)


def test_subscription_without_status_is_rejected():
    payload = factories.subscription(status=None)
    with pytest.raises(UnknownResourceShapeError):
        merge_subscription(None, payload, T0)


def test_checkout_session_insert():
    result = merge_checkout_session(None, factories.checkout_session(), T0)
    assert result.values["mode"] == "subscription"
    assert result.values["status"] == "complete"


def test_checkout_session_unknown_mode_is_rejected():
    with pytest.raises(UnknownResourceShapeError):
        merge_checkout_session(None, factories.checkout_session(mode="donation"), T0)


def test_payment_insert_and_created_fallback():
    payload = factories.payment_intent(currency="EUR")
    del payload["created"]
    values = merge_payment(None, payload, T0 + 7).values
    assert values["amount"] == 2500
    assert values["currency"] == "eur"
    assert values["created"] == T0 + 7


def test_payment_without_amount_is_rejected():
    with pytest.raises(UnknownResourceShapeError):
        merge_payment(None, factories.payment_intent(amount=None), T0)


def test_invoice_insert():
    values = merge_invoice(None, factories.invoice(), T0).values
    assert values["stripe_subscription_id"] == "sub_alice"
    assert values["amount_due"] == 1000
    assert values["status"] == "paid"


def test_invoice_subscription_from_parent_details():
    payload = factories.invoice(
        subscription=None,
        parent={"subscription_details": {"subscription": "sub_new_api"}},
    )
    assert merge_invoice(None, payload, T0).values["stripe_subscription_id"] == "sub_new_api"


def test_invoice_without_customer_is_rejected():
    with pytest.raises(UnknownResourceShapeError):
        merge_invoice(None, factories.invoice(customer=None), T0)
