import asyncio
from decimal import Decimal

import pytest

from storefront.models.cart import CartItem
from storefront.models.log import Log
from storefront.models.order import Order, OrderStatus, PaymentMethod, ShipmentStep
from storefront.models.product import Product, ProductVariant
from storefront.models.users import Address, User
from storefront.services import checkout
from storefront.services.checkout import PaymentProof, create_payment_intent, place_order, run_post_commit
from storefront.services.errors import (
    InsufficientStock,
    InsufficientWalletBalance,
    NotFoundError,
    PaymentVerificationFailed,
    ValidationError,
)
from storefront.services.inventory import StockRequest, reserve_stock
from tests.fakes import FakeNotifier, signature_for
from tests.helpers import fresh, put_in_cart


def _proof(gateway_order_id="order_fake_1", payment_id="pay_001"):
    return PaymentProof(gateway_order_id, payment_id, signature_for(gateway_order_id, payment_id))


def _cod(db, user, address=None, **kwargs):
    return place_order(
        db,
        user,
        payment_method="COD",
        address_id=address.id if address is not None else None,
        **kwargs,
    )


def _cart_count(session_factory, user):
    with session_factory() as s:
        return s.query(CartItem).filter_by(user_id=user.id).count()


def _variant_stock_of(session_factory, sku):
    with session_factory() as s:
        return s.query(ProductVariant).filter_by(sku=sku).one().stock_quantity


def _order_count(session_factory):
    with session_factory() as s:
        return s.query(Order).count()


class TestPlaceOrderCOD:
    def test_commits_order_stock_and_cart(self, db, session_factory, customer, address, mug):
        put_in_cart(db, customer, mug, 2)

        result = _cod(db, customer, address)
        order = result.order

        assert order.status == OrderStatus.PROCESSING.value
        assert order.items_price == Decimal("1000")
        assert order.tax_price == Decimal("30")
        assert order.shipping_price == Decimal("90")
        assert order.total_price == Decimal("1120")
        assert order.total_price == order.items_price - order.discount_amount + order.shipping_price + order.tax_price
        assert order.shipping_city == "Bengaluru"
        assert order.shipment_step == ShipmentStep.NONE.value

        assert fresh(session_factory, Product, mug.id).stock_quantity == 8
        assert _cart_count(session_factory, customer) == 0
        with session_factory() as s:
            log = s.query(Log).filter_by(order_id=order.id, action="ORDER_PLACED").one()
            assert log.user_id == customer.id

        assert result.post_commit.has_physical_items
        assert not result.post_commit.has_service_items
        assert result.post_commit.email == customer.email

    def test_items_are_frozen_copies(self, db, customer, address, tshirt):
        put_in_cart(db, customer, tshirt, 2, sku="TEE-M-RED", user_input="Name: ASHA")

        order = _cod(db, customer, address).order
        item = order.items[0]

        assert item.product_id == tshirt.id
        assert item.product_name == "Block Print Tee"
        assert item.sku_variant == "TEE-M-RED"
        assert (item.size, item.color) == ("M", "Red")
        assert item.user_input == "Name: ASHA"
        # Variant sale price wins over variant and product prices
        assert item.unit_price == Decimal("699")

    def test_cart_snapshot_price_is_never_used(self, db, customer, address, mug):
        put_in_cart(db, customer, mug, 1, price_snapshot=Decimal("1"))
        mug.sale_price = Decimal("450")
        db.commit()

        order = _cod(db, customer, address).order
        assert order.items[0].unit_price == Decimal("450")
        assert order.items_price == Decimal("450")

    def test_client_total_is_discarded(self, db, customer, address, mug):
        put_in_cart(db, customer, mug, 2)
        order = _cod(db, customer, address, client_total=Decimal("1.00")).order
        assert order.total_price == Decimal("1120")

    def test_coupon_applied(self, db, customer, address, mug, coupon):
        put_in_cart(db, customer, mug, 2)
        order = _cod(db, customer, address, coupon_code="festive10").order
        assert order.coupon_code == "FESTIVE10"
        assert order.coupon_discount == Decimal("100")
        assert order.total_price == Decimal("1017")

    def test_unknown_coupon_gives_no_discount(self, db, customer, address, mug):
        put_in_cart(db, customer, mug, 2)
        order = _cod(db, customer, address, coupon_code="NOPE").order
        assert order.coupon_code is None
        assert order.total_price == Decimal("1120")

    def test_service_only_cart_needs_no_address(self, db, customer, consultation):
        put_in_cart(db, customer, consultation, 1)
        result = _cod(db, customer)
        assert result.order.shipping_price == 0
        assert result.order.total_price == Decimal("1545")
        assert result.post_commit.has_service_items
        assert not result.post_commit.has_physical_items


class TestPlaceOrderGateway:
    def test_verified_payment_creates_paid_order(self, db, customer, address, mug, gateway):
        put_in_cart(db, customer, mug, 1)
        order = place_order(
            db, customer, payment_method="Gateway", address_id=address.id, payment_proof=_proof(), gateway=gateway
        ).order
        assert order.status == OrderStatus.PAID.value
        assert order.payment_id == "pay_001"
        assert order.gateway_order_id == "order_fake_1"

    def test_bad_signature_changes_nothing(self, db, session_factory, customer, address, mug, gateway):
        put_in_cart(db, customer, mug, 1)
        forged = PaymentProof("order_fake_1", "pay_001", "0" * 64)

        with pytest.raises(PaymentVerificationFailed):
            place_order(db, customer, payment_method="Gateway", address_id=address.id, payment_proof=forged, gateway=gateway)

        assert _order_count(session_factory) == 0
        assert fresh(session_factory, Product, mug.id).stock_quantity == 10
        assert _cart_count(session_factory, customer) == 1

    def test_missing_proof(self, db, customer, address, mug, gateway):
        put_in_cart(db, customer, mug, 1)
        with pytest.raises(PaymentVerificationFailed):
            place_order(db, customer, payment_method="Gateway", address_id=address.id, gateway=gateway)

    def test_payment_cannot_be_used_twice(self, db, customer, address, mug, gateway):
        put_in_cart(db, customer, mug, 1)
        place_order(db, customer, payment_method="Gateway", address_id=address.id, payment_proof=_proof(), gateway=gateway)

        put_in_cart(db, customer, mug, 1)
        with pytest.raises(ValidationError):
            place_order(db, customer, payment_method="Gateway", address_id=address.id, payment_proof=_proof(), gateway=gateway)

    def test_payment_claimed_by_a_concurrent_checkout(
        self, db, session_factory, customer, other_customer, address, mug, gateway, monkeypatch
    ):
        put_in_cart(db, customer, mug, 1)
        rival_id = other_customer.id
        real_quote = checkout.quote_cart

        def quote_then_competing_order(*args, **kwargs):
            quote = real_quote(*args, **kwargs)
            # Another request with the same proof commits after the reuse check
            with session_factory() as other:
                other.add(Order(
                    user_id=rival_id,
                    status=OrderStatus.PAID.value,
                    items_price=Decimal("500"),
                    total_price=Decimal("605"),
                    payment_method=PaymentMethod.GATEWAY.value,
                    payment_id="pay_001",
                ))
                other.commit()
            return quote

        monkeypatch.setattr(checkout, "quote_cart", quote_then_competing_order)

        with pytest.raises(ValidationError, match="already been used"):
            place_order(db, customer, payment_method="Gateway", address_id=address.id, payment_proof=_proof(), gateway=gateway)

        with session_factory() as s:
            assert s.query(Order).filter(Order.payment_id == "pay_001").count() == 1
            assert s.query(Order).filter(Order.user_id == customer.id).count() == 0
        assert fresh(session_factory, Product, mug.id).stock_quantity == 10
        assert _cart_count(session_factory, customer) == 1


class TestPreconditions:
    def test_empty_cart(self, db, customer, address):
        with pytest.raises(ValidationError):
            _cod(db, customer, address)

    def test_unknown_payment_method(self, db, customer, address, mug):
        put_in_cart(db, customer, mug, 1)
        with pytest.raises(ValidationError):
            place_order(db, customer, payment_method="Barter", address_id=address.id)

    def test_physical_items_need_address(self, db, session_factory, customer, mug):
        put_in_cart(db, customer, mug, 1)
        with pytest.raises(ValidationError):
            _cod(db, customer)
        assert fresh(session_factory, Product, mug.id).stock_quantity == 10

    def test_address_must_belong_to_buyer(self, db, customer, other_customer, mug):
        foreign = Address(
            user_id=other_customer.id, full_name="Vikram Shah", phone="1", street="x", city="Pune", state="MH", postal_code="411001"
        )
        db.add(foreign)
        db.commit()
        put_in_cart(db, customer, mug, 1)
        with pytest.raises(NotFoundError):
            _cod(db, customer, foreign)

    def test_minimum_order_quantity(self, db, customer, address, mug):
        mug.min_order_quantity = 3
        db.commit()
        put_in_cart(db, customer, mug, 2)
        with pytest.raises(ValidationError):
            _cod(db, customer, address)

    def test_variant_product_without_sku(self, db, customer, address, tshirt):
        put_in_cart(db, customer, tshirt, 1)
        with pytest.raises(ValidationError):
            _cod(db, customer, address)


class TestAtomicity:
    def test_second_line_out_of_stock(self, db, session_factory, customer, address, mug, tshirt):
        put_in_cart(db, customer, mug, 2)
        put_in_cart(db, customer, tshirt, 2, sku="TEE-L-BLU")

        with pytest.raises(InsufficientStock):
            _cod(db, customer, address)

        assert _order_count(session_factory) == 0
        assert fresh(session_factory, Product, mug.id).stock_quantity == 10
        assert _cart_count(session_factory, customer) == 2

    def test_last_unit_sold_once(self, db, session_factory, customer, other_customer, address, tshirt):
        put_in_cart(db, customer, tshirt, 1, sku="TEE-L-BLU")
        put_in_cart(db, other_customer, tshirt, 1, sku="TEE-L-BLU")
        other_address = Address(
            user_id=other_customer.id, full_name="Vikram Shah", phone="1", street="x", city="Pune", state="MH", postal_code="411001"
        )
        db.add(other_address)
        db.commit()

        _cod(db, customer, address)
        with pytest.raises(InsufficientStock):
            _cod(db, other_customer, other_address)

        with session_factory() as s:
            assert s.query(ProductVariant).filter_by(sku="TEE-L-BLU").one().stock_quantity == 0
            assert s.query(Order).count() == 1
        assert _cart_count(session_factory, other_customer) == 1

    def test_last_unit_taken_between_quote_and_reservation(
        self, db, session_factory, customer, address, tshirt, monkeypatch
    ):
        put_in_cart(db, customer, tshirt, 1, sku="TEE-L-BLU")
        last_unit = StockRequest(tshirt.id, "TEE-L-BLU", 1)
        real_quote = checkout.quote_cart

        def quote_then_competing_reservation(*args, **kwargs):
            quote = real_quote(*args, **kwargs)
            # The quote saw one unit; another buyer commits it before reservation
            with session_factory() as other:
                reserve_stock(other, [last_unit])
                other.commit()
            return quote

        monkeypatch.setattr(checkout, "quote_cart", quote_then_competing_reservation)

        with pytest.raises(InsufficientStock):
            _cod(db, customer, address)

        assert _order_count(session_factory) == 0
        assert _variant_stock_of(session_factory, "TEE-L-BLU") == 0
        assert _cart_count(session_factory, customer) == 1


class TestWalletSettlement:
    def test_points_redeemed_and_rewarded(self, db, session_factory, customer, address, mug, reward_rules):
        customer.wallet_balance = 50
        db.commit()
        put_in_cart(db, customer, mug, 2)

        order = _cod(db, customer, address, points_to_redeem=50).order

        assert order.wallet_discount == Decimal("50")
        assert order.total_price == Decimal("1068.50")
        assert order.points_redeemed == 50
        assert order.points_awarded == 20
        assert fresh(session_factory, User, customer.id).wallet_balance == 20

    def test_overdrawn_wallet_changes_nothing(self, db, session_factory, customer, address, mug):
        customer.wallet_balance = 10
        db.commit()
        put_in_cart(db, customer, mug, 1)

        with pytest.raises(InsufficientWalletBalance):
            _cod(db, customer, address, points_to_redeem=50)

        assert _order_count(session_factory) == 0
        assert fresh(session_factory, User, customer.id).wallet_balance == 10
        assert fresh(session_factory, Product, mug.id).stock_quantity == 10


class TestPaymentIntent:
    def test_amount_is_server_computed(self, db, customer, mug, gateway):
        put_in_cart(db, customer, mug, 2)

        intent = asyncio.run(create_payment_intent(db, customer, gateway))

        assert intent.amount == 112000
        assert intent.total == Decimal("1120.00")
        assert gateway.calls_to("create_payment_intent")[0]["amount"] == 112000

    def test_empty_cart(self, db, customer, gateway):
        with pytest.raises(ValidationError):
            asyncio.run(create_payment_intent(db, customer, gateway))
        assert gateway.calls == []


class TestPostCommit:
    def test_ships_and_notifies(self, db, session_factory, customer, address, mug, carrier, notifier):
        put_in_cart(db, customer, mug, 1)
        result = _cod(db, customer, address)

        asyncio.run(run_post_commit(result.post_commit, session_factory, carrier, notifier))

        order = fresh(session_factory, Order, result.order.id)
        assert order.status == OrderStatus.SHIPPED.value
        assert notifier.sent == [("order_confirmation", customer.email, result.order.id)]

    def test_service_items_notify_admin(self, db, session_factory, customer, consultation, carrier, notifier):
        put_in_cart(db, customer, consultation, 1)
        result = _cod(db, customer)

        asyncio.run(run_post_commit(result.post_commit, session_factory, carrier, notifier))

        assert carrier.calls == []
        assert [kind for kind, _, _ in notifier.sent] == ["order_confirmation", "admin_service_notice"]

    def test_failures_do_not_touch_the_order(self, db, session_factory, customer, address, mug, carrier):
        put_in_cart(db, customer, mug, 1)
        result = _cod(db, customer, address)
        carrier.fail_on.add("create_shipment")

        asyncio.run(run_post_commit(result.post_commit, session_factory, carrier, FakeNotifier(fail=True)))

        order = fresh(session_factory, Order, result.order.id)
        assert order.status == OrderStatus.PROCESSING.value
        assert order.shipment_step == ShipmentStep.NONE.value
        assert fresh(session_factory, Product, mug.id).stock_quantity == 9
