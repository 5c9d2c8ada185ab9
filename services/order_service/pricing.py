from dataclasses import dataclass
from typing import Optional

from shared.config import settings


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    name: str
    quantity: int
    price: float
    discount_price: Optional[float]

    @property
    def unit_price(self) -> float:
        # Catalog discount wins over list price when present
        return self.discount_price if self.discount_price is not None else self.price

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass(frozen=True)
class Totals:
    subtotal: float
    tax: float
    shipping_cost: float
    discount: float
    total: float


def shipping_cost_for(subtotal: float) -> float:
    return 0.0 if subtotal >= settings.FREE_SHIPPING_THRESHOLD else settings.FLAT_SHIPPING_FEE


def compute_totals(lines: list[PricedLine], discount: float = 0.0) -> Totals:
    subtotal = round(sum(line.unit_price * line.quantity for line in lines), 2)
    tax = round(subtotal * settings.TAX_RATE, 2)
    shipping = shipping_cost_for(subtotal)
    total = round(subtotal + tax + shipping - discount, 2)
    return Totals(subtotal=subtotal, tax=tax, shipping_cost=shipping, discount=discount, total=total)
