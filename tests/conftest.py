"""Fixtures partagees / Shared fixtures."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import delivery_tracking.models  # noqa: F401
from delivery_tracking.api.deps import get_notifier
from delivery_tracking.database import Base, get_db
from delivery_tracking.main import app
from delivery_tracking.models.delivery import TransportMode
from delivery_tracking.rate_limit import limiter
from delivery_tracking.schemas.delivery import DeliveryCreate
from delivery_tracking.services.locks import delivery_locks
from delivery_tracking.services.notifications import NotificationDispatcher
from delivery_tracking.services.tracking_service import TrackingService
from delivery_tracking.utils.timeutils import now_utc

DHAKA = (23.8103, 90.4125)
CHITTAGONG = (22.3569, 91.7832)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tracking.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_locks():
    # Les verrous sont lies a la boucle du test / Locks are bound to the test's loop
    delivery_locks.clear()
    yield
    delivery_locks.clear()


@pytest.fixture
def broadcasts() -> list[dict]:
    return []


@pytest.fixture
def notifier(broadcasts):
    async def _capture(message: dict):
        broadcasts.append(message)

    return NotificationDispatcher(_capture)


@pytest.fixture
def tracking(db, notifier) -> TrackingService:
    return TrackingService(db, notifier=notifier)


@pytest.fixture
def delivery_data():
    def _build(**overrides) -> DeliveryCreate:
        data = {
            "order_reference": "ORD-001",
            "transport_mode": TransportMode.TRUCK,
            "pickup_label": "Dhaka",
            "pickup_latitude": DHAKA[0],
            "pickup_longitude": DHAKA[1],
            "delivery_label": "Chittagong",
            "delivery_latitude": CHITTAGONG[0],
            "delivery_longitude": CHITTAGONG[1],
        }
        data.update(overrides)
        return DeliveryCreate(**data)

    return _build


@pytest.fixture
def new_delivery(tracking, delivery_data):
    """Livraison initialisee (geofences, etat, ETA initiale) / Initialised delivery."""
    async def _create(**overrides):
        delivery, _ = await tracking.initialize(delivery_data(**overrides))
        return delivery

    return _create


@pytest.fixture
def clock():
    """Horodatages client a la seconde / Client timestamps at second resolution."""
    start = now_utc().replace(microsecond=0) - timedelta(hours=6)

    def _at(seconds: float = 0):
        return start + timedelta(seconds=seconds)

    return _at


@pytest.fixture
async def client(session_factory, notifier):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    limiter.enabled = False
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    limiter.enabled = True
