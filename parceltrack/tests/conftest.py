"""
Centralized Test Configuration.
"""

import pytest
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import Pool

from parceltrack.app.main import app
from parceltrack.app.core.dependencies import get_tracking_services
from parceltrack.app.db.session import Base, make_session_factory
from parceltrack.app.models.enums import UserRole
from parceltrack.app.models.parcel import Address
from parceltrack.app.models.user import User
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.services.tracking import build_tracking_services


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# File-backed so that concurrent sessions get their own connections
@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'parceltrack_test.db'}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
async def principals(session_factory):
    """Directory users and the principals they authenticate as."""
    specs = {
        "customer": (UserRole.CUSTOMER, True),
        "other_customer": (UserRole.CUSTOMER, True),
        "agent": (UserRole.AGENT, True),
        "other_agent": (UserRole.AGENT, True),
        "inactive_agent": (UserRole.AGENT, False),
        "admin": (UserRole.ADMIN, True),
    }
    async with session_factory() as db:
        users = {
            name: User(email=f"{name}@parceltrack.test", username=name, role=role, is_active=active)
            for name, (role, active) in specs.items()
        }
        db.add_all(users.values())
        await db.commit()

        return SimpleNamespace(**{
            name: Principal(id=user.id, role=user.role) for name, user in users.items()
        })


@pytest.fixture
def services(session_factory):
    return build_tracking_services(session_factory, realtime_backend="local")


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest.fixture
def broker(services):
    return services.broker


@pytest.fixture
async def booked_parcel(lifecycle, principals):
    return await lifecycle.create_parcel(
        principals.customer,
        pickup_address=Address("A"),
        delivery_address=Address("B"),
        size="M",
        weight=2.5,
        payment_type="COD",
        cod_amount=500
    )


@pytest.fixture
async def assigned_parcel(lifecycle, principals, booked_parcel):
    return await lifecycle.assign_agent(principals.admin, booked_parcel.id, principals.agent.id)


@pytest.fixture
async def client(services):
    """Async client for testing."""
    app.dependency_overrides[get_tracking_services] = lambda: services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}
