from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings

TEST_JWT_SECRET = "field-service-test-secret-with-32-plus-chars"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance (e.g. with a different JWT secret) across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_alert_tracker():
    from app.utils.alerting import alert_tracker

    alert_tracker.reset()
    yield
    alert_tracker.reset()


@pytest.fixture
def engine():
    from app.models.service import Base

    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def seed_world(db) -> SimpleNamespace:
    """Users, franchises and the records service requests point at."""
    from app.core.auth import ActingUser
    from app.models.service import Franchise, InstallationRequest, Product, Subscription, User

    db.add_all(
        [
            User(id="admin-1", name="Ada Admin", role="ADMIN", city="Vilnius"),
            User(id="owner-1", name="Olga Owner", role="FRANCHISE_OWNER", city="Vilnius"),
            User(id="owner-2", name="Oskar Owner", role="FRANCHISE_OWNER", city="Kaunas"),
            User(id="agent1", name="Andrius Agent", phone="+37060000001", role="SERVICE_AGENT", city="Vilnius"),
            User(id="agent2", name="Aiste Agent", phone="+37060000002", role="SERVICE_AGENT", city="Vilnius"),
            User(id="agent-off", name="Retired Agent", role="SERVICE_AGENT", city="Vilnius", is_active=False),
            User(id="customer-1", name="Cathy Customer", phone="+37060000009", role="CUSTOMER", city="Vilnius"),
            User(id="customer-2", name="Carl Customer", role="CUSTOMER", city="Kaunas"),
            User(id="customer-nocity", name="Nomad", role="CUSTOMER"),
            User(id="customer-far", name="Faraway", role="CUSTOMER", city="Klaipeda"),
        ]
    )
    db.flush()
    db.add_all(
        [
            Franchise(id="fr-vilnius", name="Vilnius Water", city="Vilnius", owner_id="owner-1"),
            Franchise(id="fr-kaunas", name="Kaunas Water", city="Kaunas", owner_id="owner-2"),
            Product(id="prod-1", name="RO Purifier", deposit=1500, buy_price=15000),
        ]
    )
    db.flush()
    db.add_all(
        [
            Subscription(id="sub-1", customer_id="customer-1", product_id="prod-1", franchise_id="fr-vilnius"),
            InstallationRequest(
                id="inst-1",
                customer_id="customer-1",
                product_id="prod-1",
                franchise_id="fr-vilnius",
                order_type="RENTAL",
                status="SUBMITTED",
            ),
            InstallationRequest(
                id="inst-2",
                customer_id="customer-2",
                product_id="prod-1",
                franchise_id="fr-kaunas",
                order_type="PURCHASE",
                status="SUBMITTED",
            ),
        ]
    )
    db.commit()

    return SimpleNamespace(
        admin=ActingUser(user_id="admin-1", role="ADMIN", name="Ada Admin"),
        owner=ActingUser(user_id="owner-1", role="FRANCHISE_OWNER", name="Olga Owner"),
        other_owner=ActingUser(user_id="owner-2", role="FRANCHISE_OWNER", name="Oskar Owner"),
        agent=ActingUser(user_id="agent1", role="SERVICE_AGENT", name="Andrius Agent"),
        other_agent=ActingUser(user_id="agent2", role="SERVICE_AGENT", name="Aiste Agent"),
        customer=ActingUser(user_id="customer-1", role="CUSTOMER", name="Cathy Customer"),
        other_customer=ActingUser(user_id="customer-2", role="CUSTOMER", name="Carl Customer"),
    )


@pytest.fixture
def world(db):
    return seed_world(db)


def insert_service_request(db, **overrides) -> str:
    from app.models.service import ServiceRequest

    now = datetime.now(timezone.utc)
    values = {
        "customer_id": "customer-1",
        "product_id": "prod-1",
        "type": "MAINTENANCE",
        "description": "Filter replacement",
        "status": "CREATED",
        "franchise_id": "fr-vilnius",
        "requires_payment": False,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    record = ServiceRequest(**values)
    db.add(record)
    db.commit()
    return record.id


@pytest.fixture
def make_request(db, world):
    def _make(**overrides) -> str:
        return insert_service_request(db, **overrides)

    return _make


@pytest.fixture
def service(db, world):
    from app.services.service_request_service import build_service_request_service

    return build_service_request_service(db)


@pytest.fixture
def make_token():
    def _make(user_id: str, role: str, secret: str = TEST_JWT_SECRET, **claims) -> str:
        payload = {
            "sub": user_id,
            "role": role,
            "iat": int(datetime.now(timezone.utc).timestamp()),
            "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()),
        }
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: str, role: str) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _headers


@pytest.fixture
def override_db(session_factory):
    """Point the app's get_db dependency at the in-memory test database."""
    from app.core.dependencies import get_db
    from app.main import app

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def client(monkeypatch, override_db, world):
    """In-process ASGI client; requests authenticate with real HS256 tokens."""
    from app.main import app

    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.delenv("JWT_AUDIENCE", raising=False)
    get_settings.cache_clear()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
