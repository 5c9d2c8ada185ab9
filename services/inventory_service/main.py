from fastapi import FastAPI

from shared.messaging.runtime import ServiceRuntime
from shared.observability import setup_observability

from .consumers import SUBSCRIPTIONS
from .models import InventoryItem, Reservation  # Import to register with Base
from .router import public_router, router
from .service import SERVICE_NAME

inventory_app = FastAPI(title="Inventory Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(inventory_app, "inventory_service")

inventory_app.include_router(public_router)
inventory_app.include_router(router)

runtime = ServiceRuntime(SERVICE_NAME, SUBSCRIPTIONS)


@inventory_app.on_event("startup")
async def startup_event():
    await runtime.start()


@inventory_app.on_event("shutdown")
async def shutdown_event():
    await runtime.stop()
