"""
Orders HTTP API
===============
FastAPI routes for order placement, cancellation, administration and reads.

NO BUSINESS LOGIC - request parsing, access checks and the response
envelope only. Everything else is delegated to OrderTransactionEngine.

Identity comes from the upstream gateway as trusted headers:
    X-User-Id    authenticated user id
    X-User-Role  CUSTOMER (default) or ADMIN
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from db import Database
from errors import OrderError
from order import LineItemRequest, OrderPatch, OrderTransactionEngine, UNSET
from order_state import OrderStatus, PaymentStatus


logger = logging.getLogger(__name__)


ADMIN_ROLE = "ADMIN"


# ============================================================================
# REQUEST MODELS
# ============================================================================

class _RequestModel(BaseModel):
    # Accept both product_id and productId
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItemIn(_RequestModel):
    product_id: str
    quantity: int


class CreateOrderIn(_RequestModel):
    items: List[LineItemIn] = []
    shipping_address_id: Optional[str] = None
    payment_method: Optional[str] = None


class UpdateOrderIn(_RequestModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    shipping_address_id: Optional[str] = None
    payment_method: Optional[str] = None

    def to_patch(self) -> OrderPatch:
        sent = self.model_fields_set
        return OrderPatch(
            status=self.status,
            payment_status=self.payment_status,
            shipping_address_id=(
                self.shipping_address_id if "shipping_address_id" in sent else UNSET
            ),
            payment_method=self.payment_method if "payment_method" in sent else UNSET
        )


# ============================================================================
# IDENTITY & DEPENDENCIES
# ============================================================================

@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_engine(request: Request) -> OrderTransactionEngine:
    return request.app.state.engine


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: str = Header(default="CUSTOMER")
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return CurrentUser(id=x_user_id, role=x_user_role.upper())


def admin_user(user: CurrentUser = Depends(current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def _require_owner_or_admin(user: CurrentUser, owner_id: str):
    if not user.is_admin and owner_id != user.id:
        raise HTTPException(status_code=403, detail="Forbidden")


def _ok(message: str, data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "message": message, "data": data}
    )


def _fail(status_code: int, message: str, error: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "error": error or {"message": message}
        }
    )


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(
    engine: OrderTransactionEngine,
    database: Optional[Database] = None
) -> FastAPI:
    """
    Build the API around an already constructed engine.

    Args:
        engine: Order engine (owns no global state)
        database: Handle used by /health; defaults to the engine's
    """
    app = FastAPI(title="Order Transaction API")
    app.state.engine = engine
    app.state.database = database or engine.database

    _register_error_handlers(app)
    _register_routes(app)

    return app


def _register_error_handlers(app: FastAPI):

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError):
        return _fail(exc.status_code, exc.message, exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _fail(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _fail(
            400,
            "Invalid request",
            {"code": "VALIDATION_ERROR", "message": "Invalid request",
             "errors": [
                 {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                 for err in exc.errors()
             ]}
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {str(exc)}",
            exc_info=exc
        )
        return _fail(
            500,
            "Internal Server Error",
            {"code": "INTERNAL_ERROR", "message": "Internal Server Error"}
        )


def _register_routes(app: FastAPI):

    # ========================================================================
    # HEALTH & METRICS
    # ========================================================================

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        database = request.app.state.database
        healthy = database.is_healthy()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "degraded",
                "database": healthy,
                "database_stats": database.get_stats(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # ========================================================================
    # CUSTOMER ROUTES
    # ========================================================================

    @app.get("/api/orders/my-orders")
    def get_user_orders(
        page: int = 1,
        limit: int = 10,
        user: CurrentUser = Depends(current_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        result = engine.list_user_orders(user.id, page=page, limit=limit)
        return _ok("Orders retrieved successfully", result.to_dict())

    @app.post("/api/orders")
    def create_order(
        body: CreateOrderIn,
        user: CurrentUser = Depends(current_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        record = engine.create_order(
            user.id,
            [LineItemRequest(item.product_id, item.quantity) for item in body.items],
            shipping_address_id=body.shipping_address_id,
            payment_method=body.payment_method
        )
        return _ok("Order created successfully", record.to_dict(), status_code=201)

    @app.post("/api/orders/{order_id}/cancel")
    def cancel_order(
        order_id: str,
        user: CurrentUser = Depends(current_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        existing = engine.get_order(order_id)
        _require_owner_or_admin(user, existing.user_id)

        record = engine.cancel_order(order_id)
        return _ok("Order cancelled successfully", record.to_dict())

    # ========================================================================
    # ADMIN ROUTES
    # ========================================================================

    @app.get("/api/orders")
    def get_all_orders(
        page: int = 1,
        limit: int = 10,
        user: CurrentUser = Depends(admin_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        result = engine.list_orders(page=page, limit=limit)
        return _ok("Orders retrieved successfully", result.to_dict())

    @app.put("/api/orders/{order_id}")
    def update_order(
        order_id: str,
        body: UpdateOrderIn,
        force: bool = False,
        user: CurrentUser = Depends(admin_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        if force:
            logger.warning(
                f"Administrative override on order {order_id}",
                extra={"order_id": order_id, "admin_id": user.id}
            )
        record = engine.update_order(order_id, body.to_patch(), force=force)
        return _ok("Order updated successfully", record.to_dict())

    # ========================================================================
    # MIXED ACCESS ROUTES
    # ========================================================================

    @app.get("/api/orders/number/{order_number}")
    def get_order_by_order_number(
        order_number: str,
        user: CurrentUser = Depends(current_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        record = engine.get_order_by_number(order_number)
        _require_owner_or_admin(user, record.user_id)
        return _ok("Order retrieved successfully", record.to_dict())

    @app.get("/api/orders/{order_id}")
    def get_order_by_id(
        order_id: str,
        user: CurrentUser = Depends(current_user),
        engine: OrderTransactionEngine = Depends(get_engine)
    ):
        record = engine.get_order(order_id)
        _require_owner_or_admin(user, record.user_id)
        return _ok("Order retrieved successfully", record.to_dict())
