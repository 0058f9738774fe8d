from fastapi import FastAPI

from shared.config.database import Base, engine
from shared.errors import register_error_handlers
from shared.observability import setup_observability

# Import models so every table the order flows touch is registered with Base
from services.cart_service import models as cart_models
from services.notification_service import models as notification_models
from services.payment_service import models as payment_models
from services.product_service import models as product_models
from services.user_service import models as user_models
from .models import BuyerOrder, Order, OrderLine
from .router import admin_router, public_router, router, stripe_router, webhook_router

order_app = FastAPI(title="Order Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")
register_error_handlers(order_app)

order_app.include_router(public_router)
order_app.include_router(stripe_router)
order_app.include_router(webhook_router)
order_app.include_router(admin_router)
order_app.include_router(router)

@order_app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
