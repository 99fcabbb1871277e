"""
Pricing Module
==============
Deterministic order totals from price snapshots.

Pure functions only: no I/O, no clock, no database. Money is Decimal,
quantized to cents with ROUND_HALF_UP at every step that produces an
amount, so the same inputs always give the same totals.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional


CENT = Decimal("0.01")

# Policy defaults (overridable through PricingConfig)
DEFAULT_TAX_RATE = Decimal("0.10")
DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal("99.00")
DEFAULT_FLAT_SHIPPING_FEE = Decimal("10.00")


def to_money(value: Any) -> Decimal:
    """Normalize a number to a cent-quantized Decimal."""
    if not isinstance(value, Decimal):
        # str() first so 0.1 stays 0.1
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def effective_unit_price(price: Decimal, sale_price: Optional[Decimal]) -> Decimal:
    """Sale price wins whenever one is set."""
    return to_money(sale_price if sale_price is not None else price)


@dataclass(frozen=True)
class PricedLine:
    """One line to price: list price, optional sale price, quantity."""
    price: Decimal
    sale_price: Optional[Decimal]
    quantity: int

    @property
    def unit_price(self) -> Decimal:
        return effective_unit_price(self.price, self.sale_price)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


class PricingCalculator:
    """
    Computes subtotal, tax, shipping and total.

    subtotal = sum(unit_price * quantity)
    tax      = subtotal * tax_rate
    shipping = 0 if subtotal > free_shipping_threshold else flat_shipping_fee
    total    = subtotal + tax + shipping
    """

    def __init__(
        self,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        free_shipping_threshold: Decimal = DEFAULT_FREE_SHIPPING_THRESHOLD,
        flat_shipping_fee: Decimal = DEFAULT_FLAT_SHIPPING_FEE
    ):
        self.tax_rate = Decimal(tax_rate)
        self.free_shipping_threshold = to_money(free_shipping_threshold)
        self.flat_shipping_fee = to_money(flat_shipping_fee)

    @classmethod
    def from_config(cls, config) -> "PricingCalculator":
        return cls(
            tax_rate=config.tax_rate,
            free_shipping_threshold=config.free_shipping_threshold,
            flat_shipping_fee=config.flat_shipping_fee
        )

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        # Strictly greater: a subtotal exactly at the threshold still pays
        if subtotal > self.free_shipping_threshold:
            return to_money(0)
        return self.flat_shipping_fee

    def compute(self, lines: Iterable[PricedLine]) -> OrderTotals:
        """
        Price a list of lines.

        Args:
            lines: Lines with price snapshot and quantity

        Returns:
            OrderTotals with total == subtotal + tax + shipping
        """
        subtotal = to_money(sum((line.line_total for line in lines), Decimal("0")))
        tax = to_money(subtotal * self.tax_rate)
        shipping = self.shipping_for(subtotal)
        total = subtotal + tax + shipping

        return OrderTotals(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=total
        )

