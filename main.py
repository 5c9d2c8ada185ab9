from fastapi import FastAPI

from services.inventory_service.main import inventory_app, runtime as inventory_runtime
from services.order_service.main import order_app, runtime as order_runtime
from services.payment_service.main import payment_app, runtime as payment_runtime
from services.shipping_service.main import shipping_app, runtime as shipping_runtime

app = FastAPI(title="Fulfillment Cluster")

# Mounted sub-apps never see lifespan events, so the cluster starts their runtimes
RUNTIMES = (inventory_runtime, payment_runtime, shipping_runtime, order_runtime)


@app.on_event("startup")
async def startup_event():
    for runtime in RUNTIMES:
        await runtime.start()


@app.on_event("shutdown")
async def shutdown_event():
    for runtime in reversed(RUNTIMES):
        await runtime.stop()


app.mount("/orders", order_app)
app.mount("/inventory", inventory_app)
app.mount("/payments", payment_app)
app.mount("/shipping", shipping_app)
