from fastapi import FastAPI

from shared.messaging.runtime import ServiceRuntime
from shared.observability import setup_observability

from .consumers import SUBSCRIPTIONS
from .models import Order  # Import to register with Base
from .router import public_router, router
from .service import SERVICE_NAME

order_app = FastAPI(title="Order Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")

order_app.include_router(public_router)
order_app.include_router(router)

runtime = ServiceRuntime(SERVICE_NAME, SUBSCRIPTIONS)


@order_app.on_event("startup")
async def startup_event():
    await runtime.start()


@order_app.on_event("shutdown")
async def shutdown_event():
    await runtime.stop()
