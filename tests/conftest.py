"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- A fake fee/coverage calculator
- Test data factories and authenticated actors
"""
# The settings validator needs a JWT secret when DEBUG=False; set it before importing the app
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import itertools
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.api.dependencies.auth import get_fee_calculator
from orderflow.core.auth import create_access_token
from orderflow.db.database import Base, get_db
from orderflow.db.models.order import Order, OrderStatus, PaymentMethod
from orderflow.db.models.restaurant import CommissionMode, Restaurant
from orderflow.db.models.rider import PayType, Rider
from orderflow.db.models.user import User, UserRole
from orderflow.domain.actor import Actor
from orderflow.domain.services.fee_client import FeeQuote
from orderflow.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# No custom event_loop fixture: pytest-asyncio handles it with
# asyncio_mode=auto and asyncio_default_fixture_loop_scope=function

_order_codes = itertools.count(1)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fee calculator
# ============================================================================


class FakeFeeCalculator:
    """In-memory fee/coverage calculator; records every quote request"""

    def __init__(self, base_fee_cents: int = 800, has_coverage: bool = True, zone_id: str = "Z-CENTRO"):
        self.base_fee_cents = base_fee_cents
        self.has_coverage = has_coverage
        self.zone_id = zone_id
        self.calls: list[tuple[int, float, float]] = []

    async def quote(self, restaurant_id: int, latitude: float, longitude: float) -> FeeQuote:
        self.calls.append((restaurant_id, latitude, longitude))
        return FeeQuote(
            has_coverage=self.has_coverage,
            base_fee_cents=self.base_fee_cents if self.has_coverage else 0,
            zone_id=self.zone_id if self.has_coverage else None,
        )


@pytest.fixture
def fee_calculator() -> FakeFeeCalculator:
    return FakeFeeCalculator()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, fee_calculator: FakeFeeCalculator):
    """Create test client with database and fee service overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_fee_calculator] = lambda: fee_calculator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        role: UserRole = UserRole.CUSTOMER,
        name: str = "Test User",
        phone_number: Optional[str] = None,
        is_active: bool = True,
        city_id: Optional[int] = None,
    ) -> User:
        user = User(
            name=name,
            phone_number=phone_number,
            role=role,
            is_active=is_active,
            city_id=city_id,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def restaurant_factory(db_session: AsyncSession, user_factory):
    """Factory for restaurants, each with its own restaurant-role user"""
    async def _create_restaurant(
        name: str = "Cevicheria Test",
        commission_rate: Decimal = Decimal("0.15"),
        commission_mode: CommissionMode = CommissionMode.GLOBAL,
        is_active: bool = True,
    ) -> Restaurant:
        owner = await user_factory(role=UserRole.RESTAURANT, name=f"{name} staff")
        restaurant = Restaurant(
            name=name,
            owner_id=owner.id,
            commission_rate=commission_rate,
            commission_mode=commission_mode,
            is_active=is_active,
        )
        db_session.add(restaurant)
        await db_session.commit()
        await db_session.refresh(restaurant)
        return restaurant

    return _create_restaurant


@pytest.fixture
def rider_factory(db_session: AsyncSession, user_factory):
    """Factory for riders, each with its own rider-role user"""
    async def _create_rider(
        name: str = "Test Rider",
        pay_type: PayType = PayType.COMMISSION,
        commission_rate: Decimal = Decimal("0.20"),
        fixed_salary_cents: int = 0,
        current_order_id: Optional[int] = None,
        is_active: bool = True,
    ) -> Rider:
        user = await user_factory(role=UserRole.RIDER, name=name)
        rider = Rider(
            user_id=user.id,
            name=name,
            pay_type=pay_type,
            commission_rate=commission_rate,
            fixed_salary_cents=fixed_salary_cents,
            current_order_id=current_order_id,
            is_active=is_active,
        )
        db_session.add(rider)
        await db_session.commit()
        await db_session.refresh(rider)
        return rider

    return _create_rider


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for orders inserted directly, bypassing checkout pricing"""
    async def _create_order(
        restaurant_id: int,
        status: OrderStatus = OrderStatus.DELIVERED,
        rider_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        subtotal_cents: int = 5000,
        delivery_fee_cents: int = 1000,
        service_fee_cents: int = 0,
        total_cents: Optional[int] = None,
        rider_bonus_cents: int = 0,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        actual_payment_method: Optional[PaymentMethod] = None,
        items: Optional[list] = None,
        delivered_at: Optional[datetime] = None,
    ) -> Order:
        if total_cents is None:
            total_cents = subtotal_cents + delivery_fee_cents + service_fee_cents
        if status == OrderStatus.DELIVERED and delivered_at is None:
            delivered_at = datetime.utcnow()
        order = Order(
            code=f"OF-T{next(_order_codes):05d}",
            status=status,
            restaurant_id=restaurant_id,
            rider_id=rider_id,
            customer_id=customer_id,
            items=items if items is not None else [
                {"name": "Ceviche", "quantity": 1, "unit_price_cents": subtotal_cents, "total_cents": subtotal_cents}
            ],
            subtotal_cents=subtotal_cents,
            delivery_fee_cents=delivery_fee_cents,
            service_fee_cents=service_fee_cents,
            total_cents=total_cents,
            rider_bonus_cents=rider_bonus_cents,
            payment_method=payment_method,
            actual_payment_method=actual_payment_method,
            delivered_at=delivered_at,
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


# ============================================================================
# Actors and tokens
# ============================================================================


@pytest.fixture
def actor_factory(user_factory):
    """Persist a user of ``role`` and return it as an Actor"""
    async def _create_actor(role: UserRole = UserRole.OWNER) -> Actor:
        user = await user_factory(role=role, name=f"Test {role.value}")
        return Actor(user_id=user.id, role=role)

    return _create_actor


@pytest.fixture
async def owner(actor_factory) -> Actor:
    return await actor_factory(UserRole.OWNER)


@pytest.fixture
async def city_admin(actor_factory) -> Actor:
    return await actor_factory(UserRole.CITY_ADMIN)


@pytest.fixture
async def agent(actor_factory) -> Actor:
    return await actor_factory(UserRole.AGENT)


@pytest.fixture
async def customer(actor_factory) -> Actor:
    return await actor_factory(UserRole.CUSTOMER)


@pytest.fixture
def rider_actor():
    def _rider_actor(rider: Rider) -> Actor:
        return Actor(user_id=rider.user_id, role=UserRole.RIDER, rider_id=rider.id)
    return _rider_actor


@pytest.fixture
def restaurant_actor():
    def _restaurant_actor(restaurant: Restaurant) -> Actor:
        return Actor(user_id=restaurant.owner_id, role=UserRole.RESTAURANT, restaurant_id=restaurant.id)
    return _restaurant_actor


@pytest.fixture
def auth_headers():
    """Bearer header for an Actor"""
    def _auth_headers(actor: Actor) -> dict[str, str]:
        token = create_access_token(
            user_id=actor.user_id,
            role=actor.role.value,
            rider_id=actor.rider_id,
            restaurant_id=actor.restaurant_id,
        )
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from orderflow.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
