"""
Tests for order creation from a quote and the canonical-state guards.
"""
import json
from datetime import timedelta

import pytest

from hub_engines.models import Cart, Order, OrderItem, OrderStatusHistory
from hub_engines.services.orders import (
    can_modify_order,
    create_order_from_quote,
    get_order_items_from_snapshot,
    get_order_totals_from_snapshot,
    is_cart_converted,
    validate_order_canonical_state,
)
from hub_engines.services.totals import quote

from conftest import MONDAY_NOON, chicago_monday

NEARBY = {"delivery_lat": 41.90, "delivery_lng": -87.63}


@pytest.fixture
def checkout(db, make_hub, make_cart, make_fee_rule):
    """An open hub with a $3.99 fee rule, a $20 cart and its delivery quote."""
    hub = make_hub(tax_rate=10.0)
    fee_rule = make_fee_rule(hub_id=hub.id, flat_fee=3.99)
    cart = make_cart(hub)
    result = quote(db, {"hub_id": hub.id, "subtotal": 20.0, "item_count": 2, **NEARBY}, now=MONDAY_NOON)
    assert result["success"] is True
    return {"hub": hub, "cart": cart, "fee_rule": fee_rule, "snapshot": result["snapshot"]}


def place(db, checkout, **kwargs):
    kwargs.setdefault("now", MONDAY_NOON)
    return create_order_from_quote(db, "sess-1", checkout["hub"].id, checkout["snapshot"], **kwargs)


class TestCreateOrder:

    def test_creates_order_items_and_history(self, db, checkout):
        result = place(db, checkout, customer={"name": "Ada"}, notes="Ring twice")

        assert result.success is True
        assert result.reason == "ORDER_CREATED"
        assert result.already_exists is False
        assert result.order_number.startswith("ORD-")

        order = db.query(Order).filter(Order.id == result.order_id).one()
        assert order.status == "placed"
        assert order.payment_status == "pending"
        assert order.customer_name == "Ada"
        assert order.notes == "Ring twice"
        assert order.subtotal == 20.0
        assert order.tax_amount == 2.0
        assert order.delivery_fee == 3.99
        assert order.total == 25.99

        items = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
        assert [(i.name_snapshot, i.quantity, i.total_price) for i in items] == [("Burger", 2, 20.0)]

        history = db.query(OrderStatusHistory).filter(OrderStatusHistory.order_id == order.id).all()
        assert [h.status for h in history] == ["placed"]

    def test_cart_is_converted(self, db, checkout):
        place(db, checkout)
        db.refresh(checkout["cart"])
        assert checkout["cart"].status == "converted"
        assert is_cart_converted(db, "sess-1") is True

    def test_totals_snapshot_is_locked(self, db, checkout):
        result = place(db, checkout)
        order = db.query(Order).filter(Order.id == result.order_id).one()
        stored = json.loads(order.totals_snapshot)

        assert stored["is_snapshot_locked"] is True
        assert stored["is_cart_detached"] is True
        assert stored["version"] == "v5"
        assert stored["finalized_at"] == "2024-01-15 18:00:00"

    def test_delivery_address_is_frozen(self, db, checkout):
        address = {"address_id": 7, "label": "1 Main St", "lat": 41.9, "lng": -87.63}
        result = place(db, checkout, address=address)
        order = db.query(Order).filter(Order.id == result.order_id).one()

        assert order.delivery_address == "1 Main St"
        assert json.loads(order.totals_snapshot)["address"]["address_id"] == 7

    def test_coupon_is_redeemed(self, db, make_hub, make_cart, make_coupon):
        hub = make_hub()
        make_cart(hub)
        coupon = make_coupon(usage_limit=5)
        snapshot = quote(
            db,
            {"hub_id": hub.id, "subtotal": 20.0, "item_count": 2, "fulfillment_type": "pickup", "coupon_code": "SAVE5"},
            now=MONDAY_NOON,
        )["snapshot"]

        result = create_order_from_quote(db, "sess-1", hub.id, snapshot, now=MONDAY_NOON)

        assert result.success is True
        db.refresh(coupon)
        assert coupon.used_count == 1
        order = db.query(Order).filter(Order.id == result.order_id).one()
        assert order.coupon_code == "SAVE5"
        assert order.discount_amount == 5.0

    def test_exhausted_coupon_rolls_back(self, db, make_hub, make_cart, make_coupon):
        hub = make_hub()
        cart = make_cart(hub)
        coupon = make_coupon(usage_limit=1)
        snapshot = quote(
            db,
            {"hub_id": hub.id, "subtotal": 20.0, "item_count": 2, "fulfillment_type": "pickup", "coupon_code": "SAVE5"},
            now=MONDAY_NOON,
        )["snapshot"]
        coupon.used_count = 1
        db.commit()

        result = create_order_from_quote(db, "sess-1", hub.id, snapshot, now=MONDAY_NOON)

        assert result.success is False
        assert result.reason == "COUPON_INVALID"
        assert result.details["coupon_reason"] == "limit_reached"
        assert db.query(Order).count() == 0
        db.refresh(cart)
        assert cart.status == "active"


class TestSnapshotImmutability:
    """Once placed, an order's totals never follow later catalog or cart changes."""

    def test_later_changes_do_not_leak(self, db, checkout):
        result = place(db, checkout)
        before = get_order_totals_from_snapshot(db, result.order_id)

        checkout["fee_rule"].flat_fee = 9.99
        for item in checkout["cart"].items:
            item.unit_price = 50.0
            item.line_total = 100.0
        checkout["hub"].tax_rate = 25.0
        db.commit()

        after = get_order_totals_from_snapshot(db, result.order_id)
        assert after == before
        assert after["delivery_fee"] == 3.99
        assert after["total"] == 25.99
        assert get_order_items_from_snapshot(db, result.order_id)[0]["line_total"] == 20.0

    def test_totals_shape(self, db, checkout):
        result = place(db, checkout)
        totals = get_order_totals_from_snapshot(db, result.order_id)

        assert totals["currency"] == "USD"
        assert totals["version"] == "v5"
        assert totals["calculated_at"] == "2024-01-15T18:00:00+00:00"
        assert totals["delivery"]["delivery_fee"] == 3.99
        assert totals["tip_amount"] == 0.0


class TestIdempotency:

    def test_second_call_returns_existing_order(self, db, checkout):
        first = place(db, checkout)
        second = place(db, checkout, now=MONDAY_NOON + timedelta(seconds=30))

        assert second.success is True
        assert second.reason == "ORDER_ALREADY_FINALIZED"
        assert second.already_exists is True
        assert second.order_id == first.order_id
        assert db.query(Order).count() == 1

    def test_new_cart_within_window_is_duplicate(self, db, checkout, make_cart):
        first = place(db, checkout)
        make_cart(checkout["hub"])

        second = place(db, checkout, now=MONDAY_NOON + timedelta(minutes=5))
        assert second.reason == "DUPLICATE_ORDER_PREVENTED"
        assert second.order_id == first.order_id

    def test_new_cart_after_window_creates_order(self, db, checkout, make_cart):
        first = place(db, checkout)
        make_cart(checkout["hub"])

        second = place(db, checkout, now=MONDAY_NOON + timedelta(minutes=11))
        assert second.reason == "ORDER_CREATED"
        assert second.order_id != first.order_id

    def test_converted_cart_without_order(self, db, checkout):
        checkout["cart"].status = "converted"
        db.commit()
        assert place(db, checkout).reason == "CART_ALREADY_CONVERTED"


class TestRejections:

    def test_invalid_request(self, db, checkout):
        assert create_order_from_quote(db, "", checkout["hub"].id, checkout["snapshot"]).reason == "INVALID_REQUEST"
        assert create_order_from_quote(db, "sess-1", 0, checkout["snapshot"]).reason == "INVALID_REQUEST"

    def test_missing_snapshot(self, db, checkout):
        result = create_order_from_quote(db, "sess-1", checkout["hub"].id, None, now=MONDAY_NOON)
        assert result.reason == "SNAPSHOT_INCOMPLETE"

    def test_cart_not_found(self, db, checkout):
        result = create_order_from_quote(db, "other-session", checkout["hub"].id, checkout["snapshot"], now=MONDAY_NOON)
        assert result.reason == "CART_NOT_FOUND"

    def test_empty_cart(self, db, make_hub, make_cart):
        hub = make_hub()
        make_cart(hub, lines=())
        result = create_order_from_quote(db, "sess-1", hub.id, {"subtotal": 0}, now=MONDAY_NOON)
        assert result.reason == "CART_EMPTY"

    def test_hub_closed(self, db, checkout):
        result = place(db, checkout, now=chicago_monday(16, 50))
        assert result.success is False
        assert result.reason == "AVAILABILITY_BLOCK"
        assert result.details["availability"]["reason"] == "HUB_CLOSING_SOON"
        assert db.query(Order).count() == 0

    def test_missing_tax_fields(self, db, checkout):
        snapshot = dict(checkout["snapshot"])
        del snapshot["tax_rate"]
        checkout["snapshot"] = snapshot
        assert place(db, checkout).reason == "SNAPSHOT_INCOMPLETE"

    def test_negative_tax(self, db, checkout):
        checkout["snapshot"] = dict(checkout["snapshot"], tax_amount=-1.0)
        assert place(db, checkout).reason == "INVALID_TAX_AMOUNT"

    def test_cart_changed_since_quote(self, db, checkout):
        checkout["snapshot"] = dict(checkout["snapshot"], subtotal=18.0)
        assert place(db, checkout).reason == "SUBTOTAL_MISMATCH"

    def test_cent_tolerance(self, db, checkout):
        checkout["snapshot"] = dict(checkout["snapshot"], subtotal=20.01)
        assert place(db, checkout).reason == "ORDER_CREATED"

    def test_zero_total(self, db, checkout):
        checkout["snapshot"] = dict(checkout["snapshot"], total=0)
        assert place(db, checkout).reason == "INVALID_TOTAL"

    def test_delivery_without_delivery_block(self, db, checkout):
        checkout["snapshot"] = dict(checkout["snapshot"], delivery=None)
        assert place(db, checkout).reason == "DELIVERY_SNAPSHOT_INCOMPLETE"


class TestCanonicalState:

    def test_valid_order(self, db, checkout):
        result = place(db, checkout)
        state = validate_order_canonical_state(db, result.order_id)

        assert state.valid is True
        assert state.to_dict() == {
            "valid": True,
            "reason": "OK",
            "order_id": result.order_id,
            "snapshot_version": "v5",
        }

    @pytest.mark.parametrize("order_id,reason", [(0, "INVALID_ORDER_ID"), ("x", "INVALID_ORDER_ID"), (404, "ORDER_NOT_FOUND")])
    def test_missing_order(self, db, order_id, reason):
        assert validate_order_canonical_state(db, order_id).reason == reason

    @pytest.mark.parametrize("column,value,reason", [
        ("totals_snapshot", None, "TOTALS_SNAPSHOT_MISSING"),
        ("cart_snapshot", None, "CART_SNAPSHOT_MISSING"),
        ("totals_snapshot", "{oops", "TOTALS_SNAPSHOT_CORRUPT"),
        ("cart_snapshot", "[1, 2]", "CART_SNAPSHOT_CORRUPT"),
        ("totals_snapshot", '{"is_snapshot_locked": false, "is_cart_detached": true}', "SNAPSHOT_NOT_LOCKED"),
        ("totals_snapshot", '{"is_snapshot_locked": true}', "CART_NOT_DETACHED"),
    ])
    def test_broken_snapshots(self, db, checkout, column, value, reason):
        result = place(db, checkout)
        order = db.query(Order).filter(Order.id == result.order_id).one()
        setattr(order, column, value)
        db.commit()

        assert validate_order_canonical_state(db, order.id).reason == reason
        assert get_order_totals_from_snapshot(db, order.id) is None
        assert get_order_items_from_snapshot(db, order.id) == []

    def test_reactivated_cart(self, db, checkout):
        result = place(db, checkout)
        cart = db.query(Cart).filter(Cart.id == checkout["cart"].id).one()
        cart.status = "active"
        db.commit()

        state = validate_order_canonical_state(db, result.order_id)
        assert state.reason == "CART_NOT_CONVERTED"
        assert state.to_dict()["cart_status"] == "active"

    def test_deleted_cart_is_fine(self, db, checkout):
        result = place(db, checkout)
        db.delete(checkout["cart"])
        db.commit()
        assert validate_order_canonical_state(db, result.order_id).valid is True


class TestCanModifyOrder:

    def test_placed_order(self, db, checkout):
        result = place(db, checkout)
        assert can_modify_order(db, result.order_id).allowed is True

    def test_confirmed_order(self, db, checkout):
        result = place(db, checkout)
        order = db.query(Order).filter(Order.id == result.order_id).one()
        order.status = "confirmed"
        db.commit()

        guard = can_modify_order(db, order.id)
        assert guard.allowed is False
        assert guard.reason == "ORDER_ALREADY_CONFIRMED"
        assert guard.to_dict()["status"] == "confirmed"

    def test_unknown_order(self, db):
        assert can_modify_order(db, 999).reason == "ORDER_NOT_FOUND"
        assert can_modify_order(db, -1).reason == "INVALID_ORDER_ID"
