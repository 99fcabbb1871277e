"""
Inventory Ledger
================
Single source of truth for per-product available stock.

Every stock change is one conditional UPDATE executed on the caller's
unit-of-work session:

    reserve: UPDATE products SET stock = stock - :n
             WHERE id = :id AND stock >= :n
    release: UPDATE products SET stock = stock + :n WHERE id = :id

The database serializes writers on the product row, so two checkouts can
never both pass the stock check for the same units. The change lands or
vanishes together with the rest of the unit of work.
"""

import logging
from typing import Optional

from prometheus_client import Counter
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from errors import InsufficientStock, InvalidLineItem, ProductNotFound
from models import Product


logger = logging.getLogger(__name__)


# ============================================================================
# METRICS
# ============================================================================

stock_reservations = Counter(
    'inventory_reservations_total',
    'Successful stock reservations'
)
stock_rejections = Counter(
    'inventory_rejections_total',
    'Rejected stock reservations',
    ['reason']
)
stock_releases = Counter(
    'inventory_releases_total',
    'Stock releases',
    ['result']
)


# Largest quantity a single line may carry; stays well inside a 64-bit column
MAX_LINE_QUANTITY = 1_000_000

_products = Product.__table__


def is_valid_quantity(quantity) -> bool:
    """Whole number of units in 1..MAX_LINE_QUANTITY."""
    # bool is an int subclass; True is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return False
    return 0 < quantity <= MAX_LINE_QUANTITY


def _check_quantity(product_id: str, quantity: int):
    if not is_valid_quantity(quantity):
        raise InvalidLineItem(product_id, quantity)


class InventoryLedger:
    """Atomic stock reserve/release against the products table."""

    def available(self, session: Session, product_id: str) -> Optional[int]:
        """
        Current stock for a product.

        Returns:
            Stock count, or None if the product does not exist
        """
        return session.execute(
            select(_products.c.stock).where(_products.c.id == product_id)
        ).scalar_one_or_none()

    def reserve(self, session: Session, product_id: str, quantity: int):
        """
        Decrement stock if at least `quantity` is available.

        Args:
            session: Unit-of-work session (shares its transaction)
            product_id: Product to reserve
            quantity: Positive number of units

        Raises:
            InvalidLineItem: Quantity is not a positive integer
            ProductNotFound: Product row is gone
            InsufficientStock: Fewer than `quantity` units available
        """
        _check_quantity(product_id, quantity)

        result = session.execute(
            update(_products)
            .where(_products.c.id == product_id)
            .where(_products.c.stock >= quantity)
            .values(stock=_products.c.stock - quantity)
        )

        if result.rowcount == 1:
            stock_reservations.inc()
            logger.debug(f"Reserved {quantity} x {product_id}")
            return

        # Nothing updated: tell missing product apart from short stock
        available = self.available(session, product_id)
        if available is None:
            stock_rejections.labels(reason='not_found').inc()
            raise ProductNotFound(product_id)

        stock_rejections.labels(reason='insufficient').inc()
        logger.info(
            f"Insufficient stock for {product_id}",
            extra={
                "product_id": product_id,
                "requested": quantity,
                "available": available
            }
        )
        raise InsufficientStock(product_id, quantity, available)

    def release(self, session: Session, product_id: str, quantity: int) -> bool:
        """
        Return units to stock.

        Args:
            session: Unit-of-work session (shares its transaction)
            product_id: Product to restock
            quantity: Positive number of units

        Returns:
            True if stock moved, False if the product no longer exists
        """
        _check_quantity(product_id, quantity)

        result = session.execute(
            update(_products)
            .where(_products.c.id == product_id)
            .values(stock=_products.c.stock + quantity)
        )

        if result.rowcount == 0:
            stock_releases.labels(result='missing_product').inc()
            logger.warning(
                f"Release skipped, product {product_id} no longer exists",
                extra={"product_id": product_id, "quantity": quantity}
            )
            return False

        stock_releases.labels(result='released').inc()
        logger.debug(f"Released {quantity} x {product_id}")
        return True
