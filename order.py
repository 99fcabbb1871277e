"""
Order Module (Production Hardened)
===================================
Order Transaction Engine: atomic order placement and cancellation.

Guarantees:
✅ All-or-nothing create/cancel (one unit of work each)
✅ Stock never oversold (conditional UPDATE per line item)
✅ Price snapshots frozen on the line items at creation
✅ Unique order numbers (SAVEPOINT + bounded regeneration)
✅ Status changes validated by the order state machine
✅ Typed results (frozen records), typed errors

The engine trusts its caller: ownership and admin checks happen at the
API boundary.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from math import ceil
from typing import Any, Dict, Iterable, List, Optional, Tuple

from prometheus_client import Counter, Histogram
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from db import Database
from errors import (
    AddressNotFound,
    DuplicateOrderNumber,
    EmptyOrder,
    InvalidLineItem,
    InvalidOrderState,
    InvalidPagination,
    OrderError,
    OrderNotFound,
    ProductNotFound,
)
from inventory import InventoryLedger, is_valid_quantity
from models import Address, Order, OrderItem, Product
from order_number import OrderNumberGenerator
from order_state import OrderStatus, PaymentStatus, TERMINAL_STATES, check_transition
from pricing import PricedLine, PricingCalculator


logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_NUMBER_ATTEMPTS = 5
DEFAULT_PAGE_SIZE = 10
DEFAULT_MAX_PAGE_SIZE = 100


# ============================================================================
# METRICS
# ============================================================================

orders_created = Counter(
    'orders_created_total',
    'Orders created'
)
orders_failed = Counter(
    'orders_failed_total',
    'Order creations aborted',
    ['reason']
)
orders_cancelled = Counter(
    'orders_cancelled_total',
    'Orders cancelled',
    ['path']
)
order_state_transitions = Counter(
    'order_state_transitions_total',
    'Order state transitions',
    ['from_state', 'to_state', 'forced']
)
order_number_collisions = Counter(
    'order_number_collisions_total',
    'Generated order numbers that collided'
)
order_value = Histogram(
    'order_value_dollars',
    'Order value distribution'
)
order_create_seconds = Histogram(
    'order_create_seconds',
    'Time spent creating an order'
)


# ============================================================================
# REQUEST / RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class LineItemRequest:
    product_id: str
    quantity: int


class _Unset:
    def __repr__(self):
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class OrderPatch:
    """
    Partial update. Fields left UNSET are not touched; None clears the
    nullable fields (shipping address, payment method).
    """
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    shipping_address_id: Any = UNSET
    payment_method: Any = UNSET


@dataclass(frozen=True)
class OrderItemRecord:
    id: str
    product_id: str
    name: str
    price: Decimal
    sale_price: Optional[Decimal]
    quantity: int

    @classmethod
    def from_model(cls, item: OrderItem) -> "OrderItemRecord":
        return cls(
            id=item.id,
            product_id=item.product_id,
            name=item.name,
            price=item.price,
            sale_price=item.sale_price,
            quantity=item.quantity
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price": float(self.price),
            "sale_price": float(self.sale_price) if self.sale_price is not None else None,
            "quantity": self.quantity
        }


@dataclass(frozen=True)
class AddressRecord:
    id: str
    address_line1: str
    address_line2: Optional[str]
    city: str
    state: str
    postal_code: str
    country: str
    phone: Optional[str]

    @classmethod
    def from_model(cls, address: Address) -> "AddressRecord":
        return cls(
            id=address.id,
            address_line1=address.address_line1,
            address_line2=address.address_line2,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
            phone=address.phone
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone
        }


@dataclass(frozen=True)
class OrderRecord:
    """Immutable view of a persisted order."""
    id: str
    user_id: str
    order_number: str
    status: OrderStatus
    items: Tuple[OrderItemRecord, ...]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    shipping_address_id: Optional[str]
    shipping_address: Optional[AddressRecord]
    payment_method: Optional[str]
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, order: Order) -> "OrderRecord":
        address = order.shipping_address
        return cls(
            id=order.id,
            user_id=order.user_id,
            order_number=order.order_number,
            status=order.status,
            items=tuple(OrderItemRecord.from_model(item) for item in order.items),
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping,
            total=order.total,
            shipping_address_id=order.shipping_address_id,
            shipping_address=AddressRecord.from_model(address) if address else None,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            created_at=order.created_at,
            updated_at=order.updated_at
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
            "subtotal": float(self.subtotal),
            "tax": float(self.tax),
            "shipping": float(self.shipping),
            "total": float(self.total),
            "shipping_address_id": self.shipping_address_id,
            "shipping_address": (
                self.shipping_address.to_dict() if self.shipping_address else None
            ),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


@dataclass(frozen=True)
class OrderPage:
    items: Tuple[OrderRecord, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.limit) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [order.to_dict() for order in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages
        }


# ============================================================================
# ORDER TRANSACTION ENGINE
# ============================================================================

class OrderTransactionEngine:
    """
    Creates, cancels, updates and reads orders.

    Every mutation runs inside one Database.unit_of_work(); any error
    rolls back the whole scope, including stock already reserved in the
    same call.
    """

    def __init__(
        self,
        database: Database,
        ledger: Optional[InventoryLedger] = None,
        pricing: Optional[PricingCalculator] = None,
        number_generator: Optional[OrderNumberGenerator] = None,
        max_number_attempts: int = DEFAULT_NUMBER_ATTEMPTS,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    ):
        self.database = database
        self.ledger = ledger or InventoryLedger()
        self.pricing = pricing or PricingCalculator()
        self.number_generator = number_generator or OrderNumberGenerator()
        self.max_number_attempts = max_number_attempts
        self.max_page_size = max_page_size

    @classmethod
    def from_config(cls, database: Database, config) -> "OrderTransactionEngine":
        """Build an engine from a config.Config."""
        return cls(
            database,
            pricing=PricingCalculator.from_config(config.pricing),
            number_generator=OrderNumberGenerator(prefix=config.orders.number_prefix),
            max_number_attempts=config.orders.number_max_attempts,
            max_page_size=config.orders.max_page_size
        )

    # ========================================================================
    # CREATE
    # ========================================================================

    def create_order(
        self,
        user_id: str,
        items: Iterable[Any],
        shipping_address_id: Optional[str] = None,
        payment_method: Optional[str] = None
    ) -> OrderRecord:
        """
        Place an order atomically.

        Args:
            user_id: Authenticated owner
            items: LineItemRequest objects or {"product_id", "quantity"} dicts
            shipping_address_id: Optional address owned by user_id
            payment_method: Optional free-form payment method

        Returns:
            The persisted order (status PENDING, payment PENDING)

        Raises:
            EmptyOrder, InvalidLineItem, AddressNotFound, ProductNotFound,
            InsufficientStock, DuplicateOrderNumber
        """
        started = time.monotonic()

        try:
            lines = self._normalize_items(items)

            with self.database.unit_of_work() as session:
                if shipping_address_id is not None:
                    self._require_address(session, user_id, shipping_address_id)

                snapshots: List[Dict[str, Any]] = []
                priced: List[PricedLine] = []

                for position, line in enumerate(lines):
                    product = session.get(Product, line.product_id)
                    if product is None:
                        raise ProductNotFound(line.product_id)

                    self.ledger.reserve(session, product.id, line.quantity)

                    snapshots.append({
                        "product_id": product.id,
                        "position": position,
                        "name": product.name,
                        "price": product.price,
                        "sale_price": product.sale_price,
                        "quantity": line.quantity
                    })
                    priced.append(
                        PricedLine(product.price, product.sale_price, line.quantity)
                    )

                totals = self.pricing.compute(priced)

                order = self._insert_order(
                    session,
                    snapshots,
                    user_id=user_id,
                    status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    subtotal=totals.subtotal,
                    tax=totals.tax,
                    shipping=totals.shipping,
                    total=totals.total,
                    shipping_address_id=shipping_address_id,
                    payment_method=payment_method
                )
                record = OrderRecord.from_model(order)

        except OrderError as e:
            orders_failed.labels(reason=e.code).inc()
            logger.info(
                f"Order creation rejected: {e.code}",
                extra={"user_id": user_id, "reason": e.code}
            )
            raise

        orders_created.inc()
        order_value.observe(float(record.total))
        order_create_seconds.observe(time.monotonic() - started)

        logger.info(
            f"Order created: {record.order_number} "
            f"(items={len(record.items)}, total=${record.total:.2f})",
            extra={"order_id": record.id, "user_id": user_id}
        )

        return record

    def _normalize_items(self, items: Iterable[Any]) -> List[LineItemRequest]:
        """Validate requested lines; repeated products merge into one line."""
        merged: Dict[str, int] = {}

        for raw in items or []:
            if isinstance(raw, LineItemRequest):
                product_id, quantity = raw.product_id, raw.quantity
            elif isinstance(raw, dict):
                product_id = raw.get("product_id")
                quantity = raw.get("quantity")
            else:
                raise InvalidLineItem(None, None)

            if not product_id or not isinstance(product_id, str):
                raise InvalidLineItem(product_id, quantity)
            if not is_valid_quantity(quantity):
                raise InvalidLineItem(product_id, quantity)

            total = merged.get(product_id, 0) + quantity
            if not is_valid_quantity(total):
                raise InvalidLineItem(product_id, total)
            merged[product_id] = total

        if not merged:
            raise EmptyOrder()

        return [LineItemRequest(pid, qty) for pid, qty in merged.items()]

    def _insert_order(
        self,
        session: Session,
        snapshots: List[Dict[str, Any]],
        **fields: Any
    ) -> Order:
        """
        Insert the order under a freshly generated order number.

        Each attempt runs in a SAVEPOINT so a number collision only undoes
        the insert, not the stock reserved earlier in the unit of work.
        """
        order_number = ""

        for attempt in range(1, self.max_number_attempts + 1):
            order_number = self.number_generator.generate()
            order = Order(
                order_number=order_number,
                items=[OrderItem(**snapshot) for snapshot in snapshots],
                **fields
            )

            try:
                with session.begin_nested():
                    session.add(order)
                    session.flush()
                return order

            except IntegrityError:
                if not self._order_number_taken(session, order_number):
                    raise

                order_number_collisions.inc()
                logger.warning(
                    f"Order number collision on {order_number} "
                    f"(attempt {attempt}/{self.max_number_attempts})"
                )

        raise DuplicateOrderNumber(order_number, self.max_number_attempts)

    @staticmethod
    def _order_number_taken(session: Session, order_number: str) -> bool:
        return session.execute(
            select(Order.id).where(Order.order_number == order_number)
        ).first() is not None

    @staticmethod
    def _require_address(session: Session, user_id: str, address_id: str):
        found = session.execute(
            select(Address.id)
            .where(Address.id == address_id)
            .where(Address.user_id == user_id)
        ).first()

        if found is None:
            raise AddressNotFound(address_id)

    # ========================================================================
    # CANCEL
    # ========================================================================

    def cancel_order(self, order_id: str) -> OrderRecord:
        """
        Cancel an order and put its stock back.

        Raises:
            OrderNotFound: No such order
            InvalidOrderState: Order is DELIVERED or CANCELLED
        """
        with self.database.unit_of_work() as session:
            order = self._load_for_update(session, order_id)
            previous = order.status
            self._cancel(session, order)
            record = OrderRecord.from_model(order)

        orders_cancelled.labels(path='cancel').inc()
        order_state_transitions.labels(
            from_state=previous.value,
            to_state=OrderStatus.CANCELLED.value,
            forced='false'
        ).inc()
        logger.info(
            f"Order cancelled: {record.order_number}",
            extra={"order_id": record.id, "from_state": previous.value}
        )

        return record

    def _cancel(self, session: Session, order: Order):
        """
        Flip status to CANCELLED only if it is not terminal, then release.

        The guard lives in the UPDATE itself so two concurrent cancels
        cannot both release the same stock.
        """
        result = session.execute(
            update(Order.__table__)
            .where(Order.__table__.c.id == order.id)
            .where(Order.__table__.c.status.notin_(list(TERMINAL_STATES)))
            .values(
                status=OrderStatus.CANCELLED,
                updated_at=datetime.now(timezone.utc)
            )
        )

        if result.rowcount == 0:
            session.refresh(order, ["status"])
            raise InvalidOrderState(order.status.value)

        self._release_items(session, order)
        session.refresh(order)

    def _write_status(
        self,
        session: Session,
        order: Order,
        expected: OrderStatus,
        target: OrderStatus
    ):
        """
        Compare-and-set the status: only rows still at `expected` change.

        Raises:
            InvalidOrderState: Status moved since the order was loaded
        """
        result = session.execute(
            update(Order.__table__)
            .where(Order.__table__.c.id == order.id)
            .where(Order.__table__.c.status == expected)
            .values(status=target, updated_at=datetime.now(timezone.utc))
        )

        if result.rowcount == 0:
            session.refresh(order, ["status"])
            raise InvalidOrderState(order.status.value, target.value)

    def _release_items(self, session: Session, order: Order):
        for item in order.items:
            self.ledger.release(session, item.product_id, item.quantity)

    def _reserve_items(self, session: Session, order: Order):
        for item in order.items:
            self.ledger.reserve(session, item.product_id, item.quantity)

    # ========================================================================
    # UPDATE (administrative)
    # ========================================================================

    def update_order(
        self,
        order_id: str,
        patch: OrderPatch,
        force: bool = False
    ) -> OrderRecord:
        """
        Apply an administrative patch.

        Status writes follow the state machine unless force=True. Moving
        into CANCELLED releases stock; a forced move out of CANCELLED
        reserves it again, so every non-cancelled order holds its stock.

        Raises:
            OrderNotFound, InvalidOrderState, AddressNotFound,
            InsufficientStock (forced reactivation only)
        """
        with self.database.unit_of_work() as session:
            order = self._load_for_update(session, order_id)
            previous = order.status
            changed = False

            if patch.status is not None:
                changed = check_transition(
                    order.id, order.status, patch.status, force=force,
                    reason="update_order"
                )

            if changed and patch.status == OrderStatus.CANCELLED and not force:
                self._cancel(session, order)
            elif changed:
                self._write_status(session, order, previous, patch.status)
                if patch.status == OrderStatus.CANCELLED:
                    self._release_items(session, order)
                elif previous == OrderStatus.CANCELLED:
                    self._reserve_items(session, order)

            if patch.payment_status is not None:
                order.payment_status = patch.payment_status

            if patch.shipping_address_id is not UNSET:
                if patch.shipping_address_id is not None:
                    self._require_address(
                        session, order.user_id, patch.shipping_address_id
                    )
                order.shipping_address_id = patch.shipping_address_id

            if patch.payment_method is not UNSET:
                order.payment_method = patch.payment_method

            session.flush()
            session.refresh(order)
            record = OrderRecord.from_model(order)

        if changed:
            if record.status == OrderStatus.CANCELLED:
                orders_cancelled.labels(path='update').inc()
            order_state_transitions.labels(
                from_state=previous.value,
                to_state=record.status.value,
                forced=str(force).lower()
            ).inc()

        logger.info(
            f"Order updated: {record.order_number}",
            extra={
                "order_id": record.id,
                "from_state": previous.value,
                "to_state": record.status.value,
                "forced": force
            }
        )

        return record

    @staticmethod
    def _load_for_update(session: Session, order_id: str) -> Order:
        # Row lock where the backend has one (SELECT ... FOR UPDATE)
        order = session.get(Order, order_id, with_for_update=True)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    # ========================================================================
    # READS
    # ========================================================================

    def get_order(self, order_id: str) -> OrderRecord:
        """Get order by ID."""
        return self._get_one(Order.id == order_id, order_id)

    def get_order_by_number(self, order_number: str) -> OrderRecord:
        """Get order by order number."""
        return self._get_one(Order.order_number == order_number, order_number)

    def list_user_orders(
        self,
        user_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> OrderPage:
        """Orders of one user, newest first."""
        return self._list(page, limit, Order.user_id == user_id)

    def list_orders(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> OrderPage:
        """All orders, newest first."""
        return self._list(page, limit)

    def _get_one(self, criterion, ref: str) -> OrderRecord:
        with self.database.read_session() as session:
            order = session.execute(
                select(Order)
                .options(selectinload(Order.items), selectinload(Order.shipping_address))
                .where(criterion)
            ).scalar_one_or_none()

            if order is None:
                raise OrderNotFound(ref)

            return OrderRecord.from_model(order)

    def _list(self, page: int, limit: int, *criteria) -> OrderPage:
        if page < 1 or not 1 <= limit <= self.max_page_size:
            raise InvalidPagination(page, limit, self.max_page_size)

        with self.database.read_session() as session:
            total = session.execute(
                select(func.count()).select_from(Order).where(*criteria)
            ).scalar_one()

            orders = session.execute(
                select(Order)
                .options(selectinload(Order.items), selectinload(Order.shipping_address))
                .where(*criteria)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()

            return OrderPage(
                items=tuple(OrderRecord.from_model(order) for order in orders),
                total=total,
                page=page,
                limit=limit
            )
