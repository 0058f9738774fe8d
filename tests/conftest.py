"""
Pytest configuration and fixtures.

Every test gets a fresh SQLite database file (aiosqlite), so sessions opened
by the sweeper see what the test committed. Payment provider, push gateway and
mail relay are AsyncMock fakes.
"""
import itertools
import os
import random
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("TRACING_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.cart_service.models import CartItem
from services.notification_service import models as notification_models  # registers tables
from services.notification_service.dispatcher import MailSender, NotificationDispatcher
from services.order_service.models import BuyerOrder, Order
from services.order_service.service import OrderService
from services.order_service.splitter import CheckoutSplitter
from services.payment_service import models as payment_models  # registers tables
from services.payment_service.gateway import CheckoutSession, PaymentGateway
from services.product_service.models import Product
from services.user_service.models import Review, User
from shared.config.database import Base

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


class Seeder:
    """Inserts rows directly, bypassing the business rules under test."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = itertools.count(1)

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def user(self, **fields: Any) -> User:
        n = next(self._seq)
        fields.setdefault("name", f"user{n}")
        fields.setdefault("email", f"user{n}@example.com")
        fields.setdefault("rating", 0.0)
        return await self._save(User(**fields))

    async def review(self, user: User, rating: int) -> Review:
        return await self._save(Review(user_id=user.id, reviewer_id=0, rating=rating))

    async def product(self, vendor: User, price_cents: int, is_available: bool = True) -> Product:
        n = next(self._seq)
        return await self._save(Product(
            vendor_id=vendor.id, name=f"item{n}", price_cents=price_cents, is_available=is_available
        ))

    async def cart_line(self, buyer: User, product: Product, duration_days: int) -> CartItem:
        return await self._save(CartItem(
            buyer_id=buyer.id,
            product_id=product.id,
            vendor_id=product.vendor_id,
            duration_days=duration_days,
            price_cents=product.price_cents,
        ))

    async def buyer_order(self, buyer: User, orders: list[dict], payment_ref: str | None = None) -> BuyerOrder:
        """orders: dicts with vendor, status and optional price/shipping/duration/received_at."""
        n = next(self._seq)
        buyer_order = BuyerOrder(
            buyer_id=buyer.id,
            shipping_cents=0,
            price_cents=0,
            payment_ref=payment_ref or f"pi_seed_{n}",
            created_at=NOW,
        )
        for position, entry in enumerate(orders):
            buyer_order.orders.append(Order(
                order_number=200000 + n * 10 + position,
                position=position,
                vendor_id=entry["vendor"].id,
                buyer_id=buyer.id,
                status=entry["status"],
                duration_days=entry.get("duration_days", 7),
                price_cents=entry.get("price_cents", 1000),
                shipping_cents=entry.get("shipping_cents", 0),
                created_at=NOW,
                received_at=entry.get("received_at"),
            ))
        buyer_order.shipping_cents = sum(o.shipping_cents for o in buyer_order.orders)
        buyer_order.price_cents = sum(o.total_cents for o in buyer_order.orders)
        return await self._save(buyer_order)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[Any, Any]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentals.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, Any]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


@pytest.fixture
def gateway() -> AsyncMock:
    mock_gateway = AsyncMock(spec=PaymentGateway)
    mock_gateway.authorize.return_value = "pi_test_auth"
    mock_gateway.capture.return_value = "pi_test_capture"
    mock_gateway.release.return_value = "pi_test_release"
    mock_gateway.transfer_to_vendor.return_value = "tr_test_1"
    mock_gateway.create_overdue_charge.return_value = CheckoutSession(
        id="cs_test_fine", url="https://checkout.test/cs_test_fine"
    )
    return mock_gateway


@pytest.fixture
def dispatcher() -> AsyncMock:
    return AsyncMock(spec=NotificationDispatcher)


@pytest.fixture
def mailer() -> AsyncMock:
    mock_mailer = AsyncMock(spec=MailSender)
    mock_mailer.send.return_value = True
    return mock_mailer


@pytest.fixture
def splitter() -> CheckoutSplitter:
    return CheckoutSplitter(clock=fixed_clock, rng=random.Random(7))


@pytest.fixture
def order_service(gateway, dispatcher, mailer, splitter) -> OrderService:
    return OrderService(gateway, dispatcher, mailer, splitter=splitter, clock=fixed_clock)


@pytest_asyncio.fixture
async def two_vendor_checkout(db, seed, splitter) -> SimpleNamespace:
    """
    Cart [A@v1 dur 7 price 5000, B@v2 dur 3 price 3000] checked out with
    2000 shipping: orders {7, 5000, 1000} and {3, 3000, 1000}.
    """
    buyer = await seed.user(address_line1="1 Main St", city="Toronto", state="ON", country="CA")
    v1 = await seed.user(role="vendor", payout_account="acct_v1")
    v2 = await seed.user(role="vendor", payout_account="acct_v2")
    product_a = await seed.product(v1, 5000)
    product_b = await seed.product(v2, 3000)
    await seed.cart_line(buyer, product_a, 7)
    await seed.cart_line(buyer, product_b, 3)

    buyer_order = await splitter.split_checkout(db, buyer.id, 2000, 10000, "pi_checkout_1")
    order_v1, order_v2 = buyer_order.orders
    return SimpleNamespace(
        buyer=buyer,
        v1=v1,
        v2=v2,
        product_a=product_a,
        product_b=product_b,
        buyer_order=buyer_order,
        order_v1=order_v1,
        order_v2=order_v2,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def reload(session_factory):
    """Reads a row through a fresh session, ignoring the test session's identity map."""
    async def _reload(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)
    return _reload
