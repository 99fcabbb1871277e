"""Tests for the database handle: unit of work, read sessions, stats."""

from __future__ import annotations

import pytest

from inventory import InventoryLedger


class TestUnitOfWork:
    def test_commit_and_rollback_are_counted(self, database, catalog) -> None:
        product_id = catalog.add_product(stock=5)
        before = database.get_stats()

        with database.unit_of_work() as session:
            InventoryLedger().reserve(session, product_id, 1)
        with pytest.raises(RuntimeError):
            with database.unit_of_work():
                raise RuntimeError("boom")

        after = database.get_stats()
        assert after["dialect"] == "sqlite"
        assert after["commits"] == before["commits"] + 1
        assert after["rollbacks"] == before["rollbacks"] + 1


class TestReadSession:
    def test_read_runs_while_writer_holds_transaction(self, database, catalog) -> None:
        product_id = catalog.add_product(stock=5)

        with database.unit_of_work() as session:
            InventoryLedger().reserve(session, product_id, 2)

            # Writer still open: reader sees the last committed stock
            assert catalog.stock(product_id) == 5

        assert catalog.stock(product_id) == 3

    def test_health_check_runs_while_writer_holds_transaction(self, database, catalog) -> None:
        product_id = catalog.add_product(stock=5)

        with database.unit_of_work() as session:
            InventoryLedger().reserve(session, product_id, 1)

            assert database.is_healthy() is True
