import pytest

from storefront.models.product import Product, ProductVariant
from storefront.services.errors import InsufficientStock, NotFoundError, ValidationError
from storefront.services.inventory import StockRequest, merge_requests, reserve_stock, restore_stock
from tests.helpers import fresh


def _variant_stock(session_factory, product, sku):
    with session_factory() as s:
        return s.query(ProductVariant).filter_by(product_id=product.id, sku=sku).one().stock_quantity


class TestMergeRequests:
    def test_same_target_is_folded_and_sorted(self):
        merged = merge_requests([
            StockRequest(2, None, 1),
            StockRequest(1, "B", 2),
            StockRequest(1, "A", 1),
            StockRequest(2, None, 3),
        ])
        assert merged == [
            StockRequest(1, "A", 1),
            StockRequest(1, "B", 2),
            StockRequest(2, None, 4),
        ]

    def test_non_positive_quantity_rejected(self):
        with pytest.raises(ValidationError):
            merge_requests([StockRequest(1, None, 0)])


class TestReserveStock:
    def test_decrements_product_and_variant(self, db, session_factory, mug, tshirt):
        reserve_stock(db, [StockRequest(mug.id, None, 3), StockRequest(tshirt.id, "TEE-M-RED", 2)])
        db.commit()

        assert fresh(session_factory, Product, mug.id).stock_quantity == 7
        assert _variant_stock(session_factory, tshirt, "TEE-M-RED") == 1
        # Variant products never touch the product-level counter
        assert fresh(session_factory, Product, tshirt.id).stock_quantity == 0

    def test_insufficient_stock_leaves_nothing_behind(self, db, session_factory, mug, tshirt):
        with pytest.raises(InsufficientStock):
            reserve_stock(db, [StockRequest(mug.id, None, 2), StockRequest(tshirt.id, "TEE-L-BLU", 2)])
        db.rollback()

        assert fresh(session_factory, Product, mug.id).stock_quantity == 10
        assert _variant_stock(session_factory, tshirt, "TEE-L-BLU") == 1

    def test_exact_remaining_quantity_is_allowed(self, db, session_factory, tshirt):
        reserve_stock(db, [StockRequest(tshirt.id, "TEE-L-BLU", 1)])
        db.commit()
        assert _variant_stock(session_factory, tshirt, "TEE-L-BLU") == 0

    def test_merged_requests_checked_together(self, db, session_factory, tshirt):
        # Two lines of 2 each exceed the 3 units on hand even though each fits alone
        with pytest.raises(InsufficientStock):
            reserve_stock(db, [StockRequest(tshirt.id, "TEE-M-RED", 2), StockRequest(tshirt.id, "TEE-M-RED", 2)])
        db.rollback()
        assert _variant_stock(session_factory, tshirt, "TEE-M-RED") == 3

    def test_missing_variant(self, db, tshirt):
        with pytest.raises(NotFoundError):
            reserve_stock(db, [StockRequest(tshirt.id, "TEE-XXL", 1)])

    def test_missing_product(self, db):
        with pytest.raises(NotFoundError):
            reserve_stock(db, [StockRequest(4242, None, 1)])

    def test_last_unit_goes_to_exactly_one_buyer(self, session_factory, tshirt):
        first, second = session_factory(), session_factory()
        try:
            # Both buyers see one unit left before either writes
            seen = second.query(ProductVariant).filter_by(sku="TEE-L-BLU").one().stock_quantity
            assert seen == 1

            reserve_stock(first, [StockRequest(tshirt.id, "TEE-L-BLU", 1)])
            first.commit()

            with pytest.raises(InsufficientStock):
                reserve_stock(second, [StockRequest(tshirt.id, "TEE-L-BLU", 1)])
            second.rollback()
        finally:
            first.close()
            second.close()

        assert _variant_stock(session_factory, tshirt, "TEE-L-BLU") == 0


class TestRestoreStock:
    def test_restores_same_targets(self, db, session_factory, mug, tshirt):
        requests = [StockRequest(mug.id, None, 4), StockRequest(tshirt.id, "TEE-M-RED", 3)]
        reserve_stock(db, requests)
        db.commit()
        restore_stock(db, requests)
        db.commit()

        assert fresh(session_factory, Product, mug.id).stock_quantity == 10
        assert _variant_stock(session_factory, tshirt, "TEE-M-RED") == 3

    def test_missing_target_is_skipped(self, db, session_factory, mug):
        restore_stock(db, [StockRequest(4242, None, 1), StockRequest(mug.id, None, 1)])
        db.commit()
        assert fresh(session_factory, Product, mug.id).stock_quantity == 11
