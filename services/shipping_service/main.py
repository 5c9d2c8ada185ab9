from fastapi import FastAPI

from shared.messaging.runtime import ServiceRuntime
from shared.observability import setup_observability

from .consumers import SUBSCRIPTIONS
from .models import Shipment  # Import to register with Base
from .router import public_router, router
from .service import SERVICE_NAME

shipping_app = FastAPI(title="Shipping Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(shipping_app, "shipping_service")

shipping_app.include_router(public_router)
shipping_app.include_router(router)

runtime = ServiceRuntime(SERVICE_NAME, SUBSCRIPTIONS)


@shipping_app.on_event("startup")
async def startup_event():
    await runtime.start()


@shipping_app.on_event("shutdown")
async def shutdown_event():
    await runtime.stop()
