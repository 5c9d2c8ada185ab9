from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import db_dependency
from shared.security.dependencies import verify_internal_api_key

from .schemas import CheckBulkRequest, CheckBulkResponse, InventoryItemResponse, StockAdjust
from .service import SERVICE_NAME, InventoryError, InventoryNotFound, InventoryService

get_db = db_dependency(SERVICE_NAME)

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()  # For any public endpoints (e.g. health check)


@public_router.get("/health")
async def health_check():
    return {"service": "inventory", "status": "running"}


@router.post("/check-bulk", response_model=CheckBulkResponse)
async def check_bulk(request: CheckBulkRequest, db: AsyncSession = Depends(get_db)):
    try:
        return await InventoryService.check_bulk(db, request.items)
    except InventoryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{product_id}", response_model=InventoryItemResponse)
async def get_inventory(product_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await InventoryService.get_item(db, product_id)
    except InventoryNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{product_id}", response_model=InventoryItemResponse)
async def adjust_stock(product_id: str, payload: StockAdjust, db: AsyncSession = Depends(get_db)):
    try:
        return await InventoryService.adjust_stock(db, product_id, payload)
    except InventoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
