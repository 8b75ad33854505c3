"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.auth.security import hash_password, create_access_token
from app.config import Settings
from app.container import build_container
from app.database import Base, get_db
from app.models.subscription import SubscriptionPlan, PLAN_MONTHLY, STATUS_ACTIVE
from app.models.subscription_payment import SubscriptionPayment, PAYMENT_COMPLETED
from app.models.user import User, ROLE_ADMIN, ROLE_EDUCATOR, ROLE_USER
from app.services.locks import LocalLockManager
from main import app

CRON_SECRET = "test-cron-secret"


class FrozenClock:
    """Callable clock the services read instead of datetime.utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
async def test_db():
    """Create test database."""
    TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    AsyncSessionLocal = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with AsyncSessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def clock():
    # Mid-April, so "previous month" is March 2025
    return FrozenClock(datetime(2025, 4, 15, 12, 0, 0))


@pytest.fixture
def settings():
    return Settings(LOCK_BACKEND="local", CRON_SECRET=CRON_SECRET)


@pytest.fixture
def container(settings, clock):
    return build_container(settings, locks=LocalLockManager(), clock=clock)


@pytest.fixture
async def client(test_db, container):
    """Create test client."""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.container = container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_user(db, email: str, role: str = ROLE_USER, name: str = None) -> User:
    user = User(
        name=name or email.split("@")[0].title(),
        email=email,
        password_hash=hash_password("TestPass123"),
        status="active",
        user_role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def add_plan(db, user, price, created_at, expires_at, status=STATUS_ACTIVE, plan_type=PLAN_MONTHLY):
    plan = SubscriptionPlan(
        user_id=user.uuid,
        plan_type=plan_type,
        price=price,
        status=status,
        created_at=created_at,
        expires_at=expires_at,
    )
    db.add(plan)
    await db.flush()
    return plan


async def add_payment(db, plan, monthly_amount, payment_date, expiration_after,
                      expiration_before=None, payment_status=PAYMENT_COMPLETED):
    payment = SubscriptionPayment(
        user_id=plan.user_id,
        subscription_id=plan.uuid,
        amount=monthly_amount,
        monthly_amount=monthly_amount,
        plan_type=plan.plan_type,
        payment_status=payment_status,
        payment_date=payment_date,
        expiration_before=expiration_before,
        expiration_after=expiration_after,
    )
    db.add(payment)
    await db.commit()
    return payment


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.uuid, "email": user.email, "role": user.user_role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_user(test_db):
    return await create_user(test_db, "admin@example.com", ROLE_ADMIN)


@pytest.fixture
async def educator(test_db):
    return await create_user(test_db, "educator@example.com", ROLE_EDUCATOR)


@pytest.fixture
async def learner(test_db):
    return await create_user(test_db, "learner@example.com", ROLE_USER)
