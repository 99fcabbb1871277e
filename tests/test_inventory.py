"""Tests for the inventory ledger's conditional stock updates."""

from __future__ import annotations

import pytest

from errors import InsufficientStock, InvalidLineItem, ProductNotFound
from inventory import MAX_LINE_QUANTITY, InventoryLedger


@pytest.fixture
def ledger() -> InventoryLedger:
    return InventoryLedger()


class TestReserve:
    def test_decrements_stock(self, database, catalog, ledger) -> None:
        product_id = catalog.add_product(stock=5)

        with database.unit_of_work() as session:
            ledger.reserve(session, product_id, 3)

        assert catalog.stock(product_id) == 2

    def test_can_take_last_unit(self, database, catalog, ledger) -> None:
        product_id = catalog.add_product(stock=1)

        with database.unit_of_work() as session:
            ledger.reserve(session, product_id, 1)

        assert catalog.stock(product_id) == 0

    def test_insufficient_stock_reports_available(self, database, catalog, ledger) -> None:
        product_id = catalog.add_product(stock=2)

        with pytest.raises(InsufficientStock) as exc_info:
            with database.unit_of_work() as session:
                ledger.reserve(session, product_id, 3)

        assert exc_info.value.product_id == product_id
        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert catalog.stock(product_id) == 2

    def test_missing_product(self, database, ledger) -> None:
        with pytest.raises(ProductNotFound):
            with database.unit_of_work() as session:
                ledger.reserve(session, "nope", 1)

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5, MAX_LINE_QUANTITY + 1, 2**63])
    def test_rejects_non_positive_quantities(self, database, catalog, ledger, quantity) -> None:
        product_id = catalog.add_product(stock=5)

        with pytest.raises(InvalidLineItem):
            with database.unit_of_work() as session:
                ledger.reserve(session, product_id, quantity)

        assert catalog.stock(product_id) == 5

    def test_rolled_back_with_unit_of_work(self, database, catalog, ledger) -> None:
        product_id = catalog.add_product(stock=5)

        with pytest.raises(RuntimeError):
            with database.unit_of_work() as session:
                ledger.reserve(session, product_id, 4)
                raise RuntimeError("later step failed")

        assert catalog.stock(product_id) == 5


class TestRelease:
    def test_increments_stock(self, database, catalog, ledger) -> None:
        product_id = catalog.add_product(stock=1)

        with database.unit_of_work() as session:
            assert ledger.release(session, product_id, 4) is True

        assert catalog.stock(product_id) == 5

    def test_missing_product_is_noop(self, database, ledger) -> None:
        with database.unit_of_work() as session:
            assert ledger.release(session, "gone", 2) is False


def test_available(database, catalog, ledger) -> None:
    product_id = catalog.add_product(stock=7)

    with database.read_session() as session:
        assert ledger.available(session, product_id) == 7
        assert ledger.available(session, "missing") is None
