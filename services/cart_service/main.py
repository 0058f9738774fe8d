from fastapi import FastAPI

from shared.config.database import Base, engine
from shared.errors import register_error_handlers
from shared.observability import setup_observability

from services.product_service import models as product_models
from services.user_service import models as user_models
from .models import CartItem  # Import to register with Base
from .router import public_router, router

cart_app = FastAPI(title="Cart Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(cart_app, "cart_service")
register_error_handlers(cart_app)

cart_app.include_router(public_router)
cart_app.include_router(router)

@cart_app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
