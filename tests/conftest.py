import json
import os

# Settings are read at import time; pin them before anything from shared is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["TRACING_ENABLED"] = "false"
os.environ["BACKGROUND_WORKERS_ENABLED"] = "false"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["PAYMENT_GATEWAY"] = "fake"
os.environ["CARRIER_GATEWAY"] = "fake"

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from services.inventory_service import consumers as inventory_consumers
from services.inventory_service.models import InventoryItem
from services.order_service import consumers as order_consumers
from services.order_service.catalog_client import CatalogClient
from services.order_service.models import Order  # noqa: F401  (registers tables)
from services.payment_service import consumers as payment_consumers
from services.payment_service.gateway import FakePaymentGateway, reset_gateway, set_gateway
from services.payment_service.models import Payment  # noqa: F401
from services.shipping_service import consumers as shipping_consumers
from services.shipping_service.carrier import FakeCarrier, reset_carrier, set_carrier
from services.shipping_service.models import Shipment  # noqa: F401
from shared.config.database import Base
from shared.messaging.consumer import MessageConsumer
from shared.messaging.outbox import OutboxDispatcher

INTERNAL_HEADERS = {"X-Internal-API-Key": "test-internal-key"}

ADDRESS = {
    "fullName": "Ayşe Yılmaz",
    "phone": "+905551112233",
    "addressLine1": "Bağdat Cad. 12",
    "city": "İstanbul",
    "postalCode": "34710",
    "country": "TR",
}

CATALOG = {
    "p-shoes": {"id": "p-shoes", "name": "Running Shoes", "price": 150.0, "discountPrice": None, "status": "active"},
    "p-socks": {"id": "p-socks", "name": "Socks", "price": 20.0, "discountPrice": 15.0, "status": "active"},
    "p-cap": {"id": "p-cap", "name": "Cap", "price": 40.0, "discountPrice": None, "status": "active"},
    "p-old": {"id": "p-old", "name": "Retired Jacket", "price": 300.0, "discountPrice": None, "status": "inactive"},
}


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def gateway():
    fake = FakePaymentGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture
def carrier():
    fake = FakeCarrier()
    set_carrier(fake)
    yield fake
    reset_carrier()


async def stock(session_factory, **quantities):
    """Seed inventory rows: stock(factory, p_shoes=5) -> product 'p-shoes' with 5 units."""
    async with session_factory() as db:
        for key, qty in quantities.items():
            db.add(InventoryItem(product_id=key.replace("_", "-"), stock_quantity=qty, reserved_quantity=0))
        await db.commit()


class FakeCatalogBackend:
    """Answers the product bulk lookup from CATALOG and the stock check from the inventory table."""

    def __init__(self, session_factory, products=None):
        self.session_factory = session_factory
        self.products = dict(CATALOG if products is None else products)
        self.down = False
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        body = json.loads(request.content)
        if request.url.path.endswith("/products/bulk"):
            data = [self.products[pid] for pid in body["ids"] if pid in self.products]
            return httpx.Response(200, json={"success": True, "data": data})
        if request.url.path.endswith("/inventory/check-bulk"):
            items = []
            async with self.session_factory() as db:
                for line in body["items"]:
                    record = await db.get(InventoryItem, line["productId"])
                    available = record.available_quantity if record else 0
                    items.append({
                        "productId": line["productId"],
                        "requested": line["quantity"],
                        "availableQuantity": available,
                        "available": available >= line["quantity"],
                    })
            return httpx.Response(200, json={"allAvailable": all(i["available"] for i in items), "items": items})
        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def catalog_backend(session_factory):
    return FakeCatalogBackend(session_factory)


@pytest.fixture
def catalog(catalog_backend):
    return CatalogClient(
        product_url="http://products.test",
        inventory_url="http://inventory.test",
        transport=httpx.MockTransport(catalog_backend),
    )


# ------------------------------------------------------------------ #
#  In-process choreography                                            #
# ------------------------------------------------------------------ #


class RecordingBroker:
    def __init__(self):
        self.published: list[tuple[str, str]] = []
        self.acked: list[tuple[str, str]] = []
        self.dead: list[tuple[str, str, str]] = []
        self.fail_with: Exception | None = None

    async def publish(self, queue, body):
        if self.fail_with is not None:
            raise self.fail_with
        self.published.append((queue, body))
        return f"{len(self.published)}-0"

    async def ack(self, queue, message_id):
        self.acked.append((queue, message_id))

    async def dead_letter(self, queue, message_id, body, error):
        self.dead.append((queue, message_id, error))


SERVICES = {
    "order": order_consumers.SUBSCRIPTIONS,
    "inventory": inventory_consumers.SUBSCRIPTIONS,
    "payment": payment_consumers.SUBSCRIPTIONS,
    "shipping": shipping_consumers.SUBSCRIPTIONS,
}


class Choreography:
    """Drains every service's outbox and hands each published envelope to
    every service subscribed to its queue, until nothing new is published."""

    def __init__(self, session_factory):
        self.broker = RecordingBroker()
        self.dispatchers = [OutboxDispatcher(session_factory, self.broker, source=s) for s in SERVICES]
        self.consumers = [MessageConsumer(s, session_factory, self.broker, subs) for s, subs in SERVICES.items()]
        self.held: list[tuple[str, str]] = []
        self._cursor = 0

    async def run(self, hold=()):
        """Deliver until quiescent. Envelopes on `hold` queues are set aside."""
        while True:
            for dispatcher in self.dispatchers:
                await dispatcher.drain()
            fresh = self.broker.published[self._cursor:]
            self._cursor = len(self.broker.published)
            if not fresh:
                return
            for queue, body in fresh:
                if queue in hold:
                    self.held.append((queue, body))
                else:
                    await self.deliver(queue, body)

    async def release(self, queue, hold=()):
        """Deliver envelopes previously held on `queue`, then keep going."""
        pending = [(q, b) for q, b in self.held if q == queue]
        self.held = [(q, b) for q, b in self.held if q != queue]
        for q, body in pending:
            await self.deliver(q, body)
        await self.run(hold=hold)

    async def deliver(self, queue, body):
        outcomes = []
        for consumer in self.consumers:
            subscription = consumer.subscription_for(queue)
            if subscription is not None:
                outcomes.append(await consumer.process(subscription, body))
        return outcomes

    def queues(self) -> list[str]:
        return [queue for queue, _ in self.broker.published]

    def envelopes(self, queue: str) -> list[dict]:
        return [json.loads(body) for q, body in self.broker.published if q == queue]

    def bodies(self, queue: str) -> list[str]:
        return [body for q, body in self.broker.published if q == queue]


@pytest.fixture
def choreography(session_factory, gateway, carrier):
    return Choreography(session_factory)


def order_request(*lines, user_id="user-1", **overrides):
    """Build an OrderCreate body: order_request(("p-shoes", 1), ("p-socks", 2))."""
    body = {
        "userId": user_id,
        "userEmail": "ayse@example.com",
        "items": [{"productId": pid, "quantity": qty} for pid, qty in lines],
        "shippingAddress": ADDRESS,
        "paymentMethod": "credit_card",
    }
    body.update(overrides)
    return body
