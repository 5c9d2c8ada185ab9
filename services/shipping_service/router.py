from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import db_dependency
from shared.observability.correlation import CorrelationContext, bound_context, correlation_from_request
from shared.security.dependencies import verify_internal_api_key

from .schemas import ShipmentResponse, ShipmentStatusUpdate
from .service import SERVICE_NAME, InvalidShipmentTransition, ShipmentNotFound, ShippingService

get_db = db_dependency(SERVICE_NAME)

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


@public_router.get("/health")
async def health_check():
    return {"service": "shipping", "status": "running"}


@router.get("/{order_id}", response_model=ShipmentResponse)
async def get_shipment(order_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await ShippingService.get_shipment(db, order_id)
    except ShipmentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


# Carrier webhook / admin: the only way a shipment moves past 'processing'
@router.patch("/{order_id}/status", response_model=ShipmentResponse)
async def update_status(
    order_id: str,
    update: ShipmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CorrelationContext = Depends(correlation_from_request),
):
    with bound_context(ctx, order_id=order_id):
        try:
            return await ShippingService.update_status(
                db, order_id, update.status, ctx,
                notes=update.notes, location=update.location,
                tracking_number=update.tracking_number, carrier=update.carrier,
            )
        except ShipmentNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except InvalidShipmentTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
