from typing import Optional

from pydantic import Field, model_validator

from shared.messaging.contracts import CamelModel


class StockCheckItem(CamelModel):
    product_id: str
    quantity: int = Field(gt=0)


class CheckBulkRequest(CamelModel):
    items: list[StockCheckItem] = Field(min_length=1)


class StockCheckResult(CamelModel):
    product_id: str
    requested: int
    available_quantity: int
    available: bool
    reason: str  # ok, not_stocked, insufficient_stock


class CheckBulkResponse(CamelModel):
    all_available: bool
    items: list[StockCheckResult]


class StockAdjust(CamelModel):
    adjustment: Optional[int] = None
    new_stock: Optional[int] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def at_least_one_field(self):
        if self.adjustment is None and self.new_stock is None and self.low_stock_threshold is None:
            raise ValueError("One of adjustment, newStock or lowStockThreshold is required")
        if self.adjustment is not None and self.new_stock is not None:
            raise ValueError("adjustment and newStock are mutually exclusive")
        return self


class InventoryItemResponse(CamelModel):
    product_id: str
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int
    low_stock_threshold: Optional[int] = None
    is_low_stock: bool

    class Config:
        from_attributes = True
