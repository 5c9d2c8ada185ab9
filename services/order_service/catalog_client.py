"""
Synchronous collaborators of order creation: the product catalog and the
inventory availability check. Both calls are short-timeout and any failure
to get a usable answer is DependencyUnavailable.
"""
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog

from shared.config import settings
from shared.observability.correlation import CORRELATION_HEADER, CorrelationContext
from shared.observability.metrics import fulfil_dependency_seconds
from shared.security import internal_headers

from .errors import DependencyUnavailable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    name: str
    price: float
    discount_price: Optional[float]
    active: bool


@dataclass(frozen=True)
class StockCheck:
    all_available: bool
    unavailable: list = field(default_factory=list)


def _is_active(product: dict) -> bool:
    if "status" in product:
        return product["status"] == "active"
    return bool(product.get("isActive", True))


class CatalogClient:
    def __init__(self, product_url: str = settings.PRODUCT_SERVICE_URL,
                 inventory_url: str = settings.INVENTORY_SERVICE_URL,
                 timeout: float = settings.HTTP_TIMEOUT_SECONDS,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.product_url = product_url.rstrip("/")
        self.inventory_url = inventory_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _post(self, dependency: str, url: str, body: dict, ctx: CorrelationContext) -> dict:
        headers = {**internal_headers(), CORRELATION_HEADER: ctx.correlation_id}
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, json=body, headers=headers)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as e:
            logger.error("dependency_call_failed", dependency=dependency, url=url, error=str(e))
            raise DependencyUnavailable(f"{dependency} service unavailable") from e
        except ValueError as e:
            logger.error("dependency_bad_response", dependency=dependency, url=url, error=str(e))
            raise DependencyUnavailable(f"{dependency} service returned an unreadable response") from e
        finally:
            fulfil_dependency_seconds.labels(dependency=dependency).observe(time.perf_counter() - started)

    async def fetch_products(self, product_ids: list[str], ctx: CorrelationContext) -> dict[str, ProductSnapshot]:
        body = await self._post("product", f"{self.product_url}/products/bulk", {"ids": product_ids}, ctx)
        try:
            products = {}
            for p in body["data"]:
                pid = str(p.get("id") or p["_id"])
                products[pid] = ProductSnapshot(
                    id=pid,
                    name=p["name"],
                    price=float(p["price"]),
                    discount_price=float(p["discountPrice"]) if p.get("discountPrice") is not None else None,
                    active=_is_active(p),
                )
            return products
        except (KeyError, TypeError, ValueError) as e:
            raise DependencyUnavailable("product service returned a malformed catalog snapshot") from e

    async def check_stock(self, quantities: dict[str, int], ctx: CorrelationContext) -> StockCheck:
        items = [{"productId": pid, "quantity": qty} for pid, qty in quantities.items()]
        body = await self._post("inventory", f"{self.inventory_url}/inventory/check-bulk", {"items": items}, ctx)
        try:
            unavailable = [item for item in body.get("items", []) if not item.get("available", False)]
            return StockCheck(all_available=bool(body["allAvailable"]), unavailable=unavailable)
        except (KeyError, TypeError, AttributeError) as e:
            raise DependencyUnavailable("inventory service returned a malformed stock check") from e
