"""
Cart service tests: items, coupons, recomputation, stock checks and expiry.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc
from modules.cart.models import Cart
from modules.cart.service import cart_service
from modules.catalog.models import ProductStatus
from modules.coupon.service import coupon_service, CouponValidationError


@pytest.fixture
def shirt(make_product):
    return make_product(name="Ankara Shirt", price=1000, stock=10)


@pytest.fixture
def cap(make_product):
    return make_product(name="Face Cap", price=500, stock=5, category="accessories")


@pytest.fixture
def filled_cart(db, customer, shirt, cap):
    cart_service.add_item(db, customer.id, shirt.id, 2)
    cart = cart_service.add_item(db, customer.id, cap.id, 1)
    db.commit()
    return cart


class TestCartItems:

    def test_get_or_create_is_idempotent(self, db, customer):
        first = cart_service.get_or_create_cart(db, customer.id)
        second = cart_service.get_or_create_cart(db, customer.id)
        assert first.id == second.id
        assert db.query(Cart).filter(Cart.user_id == customer.id).count() == 1

    def test_two_items_subtotal(self, db, customer, filled_cart):
        assert len(filled_cart.items) == 2
        assert filled_cart.subtotal == Decimal("2500.00")
        assert filled_cart.discount == Decimal("0.00")
        # service charge estimated with the default provider (paystack 1.5%)
        assert filled_cart.service_charge == 38
        assert filled_cart.total_amount == Decimal("2538.00")

    def test_adding_same_product_merges_lines(self, db, customer, shirt):
        cart_service.add_item(db, customer.id, shirt.id, 2)
        cart = cart_service.add_item(db, customer.id, shirt.id, 3)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        assert cart.subtotal == Decimal("5000.00")

    def test_variant_uses_its_own_price_and_line(self, db, customer, make_product):
        product = make_product(name="Sneakers", price=20000, stock=0,
                               variants=[("EU 42", 22000, 3), ("EU 43", None, 2)])
        v42, v43 = product.variants
        cart_service.add_item(db, customer.id, product.id, 1, variant_id=v42.id)
        cart = cart_service.add_item(db, customer.id, product.id, 1, variant_id=v43.id)

        assert len(cart.items) == 2
        assert cart.items[0].unit_price == Decimal("22000")
        assert cart.items[1].unit_price == Decimal("20000")
        assert cart.subtotal == Decimal("42000.00")

    def test_cannot_add_more_than_stock(self, db, customer, cap):
        with pytest.raises(ValidationError, match="Insufficient stock"):
            cart_service.add_item(db, customer.id, cap.id, 6)

    def test_merged_quantity_checked_against_stock(self, db, customer, cap):
        cart_service.add_item(db, customer.id, cap.id, 4)
        with pytest.raises(ValidationError, match="Insufficient stock"):
            cart_service.add_item(db, customer.id, cap.id, 2)

    def test_inactive_product_rejected(self, db, customer, make_product):
        product = make_product(name="Old Stock", status=ProductStatus.INACTIVE)
        with pytest.raises(ValidationError, match="Product is not available"):
            cart_service.add_item(db, customer.id, product.id, 1)

    def test_unknown_product(self, db, customer):
        with pytest.raises(NotFoundError):
            cart_service.add_item(db, customer.id, 9999, 1)

    def test_quantity_must_be_positive(self, db, customer, shirt):
        with pytest.raises(ValidationError):
            cart_service.add_item(db, customer.id, shirt.id, 0)

    def test_update_quantity(self, db, customer, filled_cart, shirt):
        cart = cart_service.update_item_quantity(db, customer.id, shirt.id, 4)
        assert cart.find_item(shirt.id).quantity == 4
        assert cart.subtotal == Decimal("4500.00")

    def test_update_above_recorded_max(self, db, customer, filled_cart, cap):
        with pytest.raises(ValidationError, match="Only 5 of Face Cap available"):
            cart_service.update_item_quantity(db, customer.id, cap.id, 6)

    def test_update_to_zero_removes_line(self, db, customer, filled_cart, cap):
        cart = cart_service.update_item_quantity(db, customer.id, cap.id, 0)
        assert cart.find_item(cap.id) is None
        assert cart.subtotal == Decimal("2000.00")

    def test_remove_missing_item(self, db, customer, filled_cart):
        with pytest.raises(NotFoundError, match="Item not found in cart"):
            cart_service.remove_item(db, customer.id, 4242)

    def test_clear_empties_and_zeroes(self, db, customer, filled_cart):
        cart = cart_service.clear(db, customer.id)
        assert cart.items == []
        assert cart.applied_coupons == []
        assert cart.subtotal == Decimal("0.00")
        assert cart.service_charge == 0
        assert cart.total_amount == Decimal("0.00")

    def test_clear_without_cart_is_noop(self, db, customer):
        assert cart_service.clear(db, customer.id) is None

    def test_delivery_method_sets_fee(self, db, customer, filled_cart):
        cart = cart_service.set_delivery_method(db, customer.id, "delivery")
        assert cart.delivery_fee == 1500
        assert cart.total_amount == Decimal("4038.00")

        cart = cart_service.set_delivery_method(db, customer.id, "pickup")
        assert cart.delivery_fee == 0
        assert cart.total_amount == Decimal("2538.00")

    def test_unknown_delivery_method(self, db, customer):
        with pytest.raises(ValidationError):
            cart_service.set_delivery_method(db, customer.id, "drone")


class TestCartCoupons:

    def test_ten_percent_coupon(self, db, customer, filled_cart, make_coupon):
        make_coupon("SAVE10", "percentage", 10)
        cart = cart_service.apply_coupon(db, customer.id, "save10")

        assert [c.code for c in cart.applied_coupons] == ["SAVE10"]
        assert cart.discount == Decimal("250.00")
        assert cart.total_amount == cart.subtotal + cart.delivery_fee + cart.service_charge - Decimal("250.00")

    def test_same_coupon_twice_rejected(self, db, customer, filled_cart, make_coupon):
        make_coupon("SAVE10", "percentage", 10)
        cart_service.apply_coupon(db, customer.id, "SAVE10")
        with pytest.raises(CouponValidationError, match="Coupon already applied"):
            cart_service.apply_coupon(db, customer.id, "SAVE10")

    def test_unknown_coupon(self, db, customer, filled_cart):
        with pytest.raises(CouponValidationError, match="Invalid or expired coupon"):
            cart_service.apply_coupon(db, customer.id, "NOPE")

    def test_coupon_on_empty_cart(self, db, customer, make_coupon):
        make_coupon("SAVE10")
        cart_service.get_or_create_cart(db, customer.id)
        with pytest.raises(ValidationError, match="Cart is empty"):
            cart_service.apply_coupon(db, customer.id, "SAVE10")

    def test_minimum_order_value(self, db, customer, filled_cart, make_coupon):
        make_coupon("BIGSPEND", "fixed", 1000, minimum_order_value=Decimal("5000"))
        with pytest.raises(CouponValidationError, match="Minimum order value"):
            cart_service.apply_coupon(db, customer.id, "BIGSPEND")

    def test_two_coupons_stack(self, db, customer, filled_cart, make_coupon):
        make_coupon("SAVE10", "percentage", 10)
        make_coupon("FLAT500", "fixed", 500)
        cart_service.apply_coupon(db, customer.id, "SAVE10")
        cart = cart_service.apply_coupon(db, customer.id, "FLAT500")
        assert cart.discount == Decimal("750.00")

    def test_fixed_coupon_entered_in_capitals(self, db, customer, shirt):
        coupon_service.create_coupon(db, {
            "coupon_code": "FIFTY",
            "promo_type": "Fixed",
            "discount_value": 50,
            "end_date_time": now_utc() + timedelta(days=2),
        })
        cart_service.add_item(db, customer.id, shirt.id, 1)
        cart = cart_service.apply_coupon(db, customer.id, "FIFTY")
        assert cart.discount == Decimal("50.00")

    def test_legacy_mixed_case_type_still_fixed(self, db, customer, shirt, make_coupon):
        make_coupon("FLAT50", "Flat", 50)
        cart_service.add_item(db, customer.id, shirt.id, 1)
        cart = cart_service.apply_coupon(db, customer.id, "FLAT50")
        assert cart.discount == Decimal("50.00")

    def test_remove_coupon_restores_total(self, db, customer, filled_cart, make_coupon):
        make_coupon("SAVE10")
        cart_service.apply_coupon(db, customer.id, "SAVE10")
        cart = cart_service.remove_coupon(db, customer.id, "SAVE10")
        assert cart.applied_coupons == []
        assert cart.discount == Decimal("0.00")
        assert cart.total_amount == Decimal("2538.00")

    def test_remove_coupon_not_applied(self, db, customer, filled_cart):
        with pytest.raises(NotFoundError):
            cart_service.remove_coupon(db, customer.id, "SAVE10")


class TestStockAndExpiry:

    def test_validate_stock_reports_short_lines(self, db, customer, shirt, cap):
        cart_service.add_item(db, customer.id, shirt.id, 3)
        cart = cart_service.add_item(db, customer.id, cap.id, 1)
        shirt.stock_quantity = 2
        db.flush()

        result = cart_service.validate_stock(db, cart)
        assert result.valid is False
        assert result.out_of_stock == ["Ankara Shirt"]

    def test_validate_stock_all_available(self, db, customer, filled_cart):
        result = cart_service.validate_stock(db, filled_cart)
        assert result.valid is True
        assert result.out_of_stock == []

    def test_expired_cart_is_deactivated_on_read(self, db, customer, filled_cart):
        filled_cart.expires_at = now_utc() - timedelta(minutes=1)
        db.flush()

        assert cart_service.get_active_cart(db, customer.id) is None
        assert filled_cart.is_active is False

        fresh = cart_service.get_or_create_cart(db, customer.id)
        assert fresh.id != filled_cart.id
        assert fresh.items == []

    def test_expire_stale_carts(self, db, customer, other_customer, filled_cart):
        cart_service.get_or_create_cart(db, other_customer.id)
        filled_cart.expires_at = now_utc() - timedelta(days=1)
        db.commit()

        assert cart_service.expire_stale_carts(db) == 1
        db.commit()
        assert cart_service.get_active_cart(db, customer.id) is None
        assert cart_service.get_active_cart(db, other_customer.id) is not None

    def test_mutation_pushes_expiry_forward(self, db, customer, filled_cart, shirt):
        filled_cart.expires_at = now_utc() + timedelta(hours=1)
        db.flush()
        cart = cart_service.update_item_quantity(db, customer.id, shirt.id, 3)
        assert cart.expires_at > now_utc() + timedelta(days=6)
