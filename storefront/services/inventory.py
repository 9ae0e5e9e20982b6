"""Inventory reservation.

Stock is only ever changed with single conditional UPDATE statements so two
transactions competing for the last unit cannot both succeed, whatever the
isolation level. Nothing here commits: callers own the transaction and roll
it back when a reservation fails.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.models.product import Product, ProductVariant
from storefront.services.errors import InsufficientStock, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockRequest:
    product_id: int
    sku_variant: Optional[str]
    quantity: int

    @property
    def target(self):
        return (self.product_id, self.sku_variant or "")


def merge_requests(requests: Iterable[StockRequest]) -> List[StockRequest]:
    """Fold requests for the same target together, sorted by (product, sku).

    A fixed order means concurrent reservations lock rows in the same
    sequence.
    """
    merged = OrderedDict()
    for req in requests:
        if req.quantity <= 0:
            raise ValidationError("Stock quantities must be positive.", product_id=req.product_id)
        merged[req.target] = merged.get(req.target, 0) + req.quantity
    return [
        StockRequest(product_id, sku or None, quantity)
        for (product_id, sku), quantity in sorted(merged.items())
    ]


def _stock_statement(req: StockRequest, delta: int, guarded: bool):
    if req.sku_variant:
        model = ProductVariant
        stmt = update(ProductVariant).where(
            ProductVariant.product_id == req.product_id,
            ProductVariant.sku == req.sku_variant,
        )
    else:
        model = Product
        stmt = update(Product).where(Product.id == req.product_id)

    if guarded:
        stmt = stmt.where(model.stock_quantity >= -delta)
    return stmt.values(stock_quantity=model.stock_quantity + delta).execution_options(
        synchronize_session=False
    )


def _target_exists(db: Session, req: StockRequest) -> bool:
    if req.sku_variant:
        query = select(ProductVariant.id).where(
            ProductVariant.product_id == req.product_id,
            ProductVariant.sku == req.sku_variant,
        )
    else:
        query = select(Product.id).where(Product.id == req.product_id)
    return db.execute(query).first() is not None


def reserve_stock(db: Session, requests: Iterable[StockRequest]) -> List[StockRequest]:
    """Decrement stock for every request or raise.

    Raises ``InsufficientStock`` when a target holds fewer units than asked
    for and ``NotFoundError`` when the product or variant is gone. Earlier
    decrements stay pending in the transaction; the caller must roll back.
    """
    applied = merge_requests(requests)
    for req in applied:
        result = db.execute(_stock_statement(req, -req.quantity, guarded=True))
        if result.rowcount == 1:
            continue

        if not _target_exists(db, req):
            raise NotFoundError(
                f"Product {req.product_id} is no longer available.",
                product_id=req.product_id,
                sku=req.sku_variant,
            )
        logger.info(
            "Stock reservation refused for product %s (sku=%s, qty=%s)",
            req.product_id,
            req.sku_variant,
            req.quantity,
        )
        raise InsufficientStock(
            "Not enough stock for product %s%s." % (
                req.product_id, f" ({req.sku_variant})" if req.sku_variant else ""
            ),
            product_id=req.product_id,
            sku=req.sku_variant,
            requested=req.quantity,
        )
    return applied


def restore_stock(db: Session, requests: Iterable[StockRequest]) -> List[StockRequest]:
    """Give reserved units back to the same targets they were taken from."""
    restored = merge_requests(requests)
    for req in restored:
        result = db.execute(_stock_statement(req, req.quantity, guarded=False))
        if result.rowcount == 0:
            # The catalog dropped the product or variant since the order was placed
            logger.warning(
                "Could not restore %s units of product %s (sku=%s): target no longer exists",
                req.quantity,
                req.product_id,
                req.sku_variant,
            )
    return restored


def requests_for_lines(lines) -> List[StockRequest]:
    return [StockRequest(line.product.id, line.sku, line.quantity) for line in lines]


def requests_for_order(order) -> List[StockRequest]:
    return [StockRequest(item.product_id, item.sku_variant, item.quantity) for item in order.items]
