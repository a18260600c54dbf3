# conftest.py
import os

os.environ["CONSOLE_API_KEYS"] = "test-key"
os.environ["CONSOLE_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CLINIC_API_URL"] = "http://localhost:3000"

import pytest
import respx
from httpx import AsyncClient
from httpx._transports.asgi import ASGITransport  # required for ASGI testing
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smiley_console.main import app
from smiley_console.console_database import Base, ConsoleSession, get_db
from smiley_console.services.clinic_api import ClinicSession

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base.metadata.create_all(bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db

BACKEND_URL = "http://localhost:3000"
API_HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture(autouse=True)
def clean_sessions():
    yield
    db = TestingSessionLocal()
    try:
        db.query(ConsoleSession).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="module")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client(anyio_backend):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def backend():
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def logged_in(db_session):
    """A stored console session for 'recepcion' at sede 1; returns the request headers."""
    sess = ConsoleSession(
        username="recepcion",
        token="tok-1",
        user_json='{"usuario": "recepcion", "rol": "admin"}',
        selected_sede=1,
    )
    db_session.add(sess)
    db_session.commit()
    return {**API_HEADERS, "X-Console-User": "recepcion"}


@pytest.fixture
async def clinic(anyio_backend):
    session = ClinicSession(token="tok-1", username="recepcion", selected_sede=1)
    yield session
    await session.aclose()
