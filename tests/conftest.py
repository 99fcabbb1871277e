"""Shared pytest fixtures for the order engine tests.

Each test gets its own file-backed SQLite database so worker threads in
the concurrency tests can open independent connections.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

import pytest

from db import Database
from models import Address, Product
from order import OrderTransactionEngine


class Catalog:
    """Test-side access to the tables the engine does not own."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def add_product(
        self,
        name: str = "Widget",
        price: str = "10.00",
        stock: int = 10,
        sale_price: Optional[str] = None,
    ) -> str:
        with self.database.unit_of_work() as session:
            product = Product(
                name=name,
                price=Decimal(price),
                sale_price=Decimal(sale_price) if sale_price is not None else None,
                stock=stock,
            )
            session.add(product)
            session.flush()
            return product.id

    def add_address(self, user_id: str, city: str = "Springfield") -> str:
        with self.database.unit_of_work() as session:
            address = Address(
                user_id=user_id,
                address_line1="1 Main St",
                city=city,
                state="IL",
                postal_code="62701",
                country="US",
            )
            session.add(address)
            session.flush()
            return address.id

    def stock(self, product_id: str) -> Optional[int]:
        with self.database.read_session() as session:
            product = session.get(Product, product_id)
            return None if product is None else product.stock

    def set_price(self, product_id: str, price: str) -> None:
        with self.database.unit_of_work() as session:
            session.get(Product, product_id).price = Decimal(price)

    def delete_product(self, product_id: str) -> None:
        with self.database.unit_of_work() as session:
            session.delete(session.get(Product, product_id))


@pytest.fixture
def database(tmp_path) -> Database:
    db = Database(f"sqlite:///{tmp_path / 'orders.db'}")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def catalog(database: Database) -> Catalog:
    return Catalog(database)


@pytest.fixture
def engine(database: Database) -> OrderTransactionEngine:
    return OrderTransactionEngine(database)


class ScriptedNumbers:
    """Order number source that replays a fixed list."""

    def __init__(self, *numbers: str) -> None:
        self.numbers = list(numbers)
        self.calls = 0

    def generate(self) -> str:
        self.calls += 1
        if len(self.numbers) > 1:
            return self.numbers.pop(0)
        return self.numbers[0]


@pytest.fixture
def scripted_numbers():
    return ScriptedNumbers
