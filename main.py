from fastapi import FastAPI

from shared.config.database import AsyncSessionLocal, Base, engine

# IMPORTANT: import models so they register with Base
from services.user_service import models as user_models
from services.product_service import models as product_models
from services.cart_service import models as cart_models
from services.order_service import models as order_models
from services.payment_service import models as payment_models
from services.notification_service import models as notification_models

from services.cart_service.main import cart_app
from services.order_service.dependencies import get_notification_dispatcher
from services.order_service.main import order_app
from services.order_service.sweeper import OverdueSweeper

app = FastAPI(title="Rentals Cluster")

sweeper = OverdueSweeper(AsyncSessionLocal, dispatcher=get_notification_dispatcher())

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sweeper.start()

@app.on_event("shutdown")
async def shutdown_event():
    await sweeper.stop()
    await engine.dispose()

app.mount("/cart", cart_app)
app.mount("/orders", order_app)
