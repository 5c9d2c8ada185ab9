from fastapi import FastAPI

from shared.messaging.runtime import ServiceRuntime
from shared.observability.setup import setup_observability

from .consumers import SUBSCRIPTIONS
from .models import Payment  # Import to register with Base
from .router import public_router, router
from .service import SERVICE_NAME

payment_app = FastAPI(title="Payment Service", version="2.0.0")

setup_observability(payment_app, "payment_service")

payment_app.include_router(public_router)
payment_app.include_router(router)

runtime = ServiceRuntime(SERVICE_NAME, SUBSCRIPTIONS)


@payment_app.on_event("startup")
async def startup_event():
    await runtime.start()


@payment_app.on_event("shutdown")
async def shutdown_event():
    await runtime.stop()
