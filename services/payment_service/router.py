from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import db_dependency
from shared.security.dependencies import verify_internal_api_key

from .schemas import PaymentResponse
from .service import SERVICE_NAME, PaymentNotFound, PaymentService

get_db = db_dependency(SERVICE_NAME)

# Payments are only created by the payment.process consumer; HTTP is read-only
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()  # For any public endpoints (e.g. health check)


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.get("/{order_id}", response_model=PaymentResponse)
async def get_payment(order_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await PaymentService.get_payment(db, order_id)
    except PaymentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
