from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import db_dependency
from shared.observability.correlation import CorrelationContext, bound_context, correlation_from_request
from shared.security.dependencies import verify_internal_api_key

from .catalog_client import CatalogClient
from .errors import OrderError
from .schemas import (
    OrderCancel,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderStatistics,
    OrderStatus,
    OrderStatusChange,
)
from .service import SERVICE_NAME, OrderService

get_db = db_dependency(SERVICE_NAME)

# THIS PROTECTS THE ENTIRE SERVICE
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


def get_catalog_client() -> CatalogClient:
    return CatalogClient()


def _to_http(e: OrderError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


@public_router.get("/health")
async def health_check():
    return {"service": "order", "status": "running"}


@router.post("/", response_model=OrderResponse, status_code=201)
async def create_order(
    order: OrderCreate,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog_client),
    ctx: CorrelationContext = Depends(correlation_from_request),
):
    with bound_context(ctx, user_id=order.user_id):
        try:
            return await OrderService.create_order(db, order, ctx, catalog)
        except OrderError as e:
            raise _to_http(e)


@router.get("/", response_model=OrderListResponse)
async def list_orders(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    status: Optional[OrderStatus] = Query(default=None),
    payment_status: Optional[str] = Query(default=None, alias="paymentStatus"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.list_orders(
        db, user_id=user_id, status=status, payment_status=payment_status, page=page, limit=limit,
    )


@router.get("/admin/stats", response_model=OrderStatistics)
async def order_statistics(db: AsyncSession = Depends(get_db)):
    return await OrderService.statistics(db)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await OrderService.get_order(db, order_id)
    except OrderError as e:
        raise _to_http(e)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    payload: Optional[OrderCancel] = None,
    db: AsyncSession = Depends(get_db),
    ctx: CorrelationContext = Depends(correlation_from_request),
):
    payload = payload or OrderCancel()
    with bound_context(ctx, order_id=order_id):
        try:
            return await OrderService.cancel_order(db, order_id, payload.reason, payload.actor or "customer", ctx)
        except OrderError as e:
            raise _to_http(e)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    change: OrderStatusChange,
    db: AsyncSession = Depends(get_db),
    ctx: CorrelationContext = Depends(correlation_from_request),
):
    with bound_context(ctx, order_id=order_id):
        try:
            return await OrderService.update_status(
                db, order_id, change.status, change.actor, ctx,
                note=change.note, tracking_number=change.tracking_number, carrier=change.carrier,
            )
        except OrderError as e:
            raise _to_http(e)
