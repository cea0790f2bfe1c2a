# tests/conftest.py
from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "rahnavard-test-secret-key-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("MAINTENANCE_ENABLED", "false")

from rahnavard.core.clock import Clock
from rahnavard.core.security import hash_password
from rahnavard.core.settings import Settings
from rahnavard.db.session import Base
from rahnavard.main import app as fastapi_app
from rahnavard.services.container import SecurityContainer, build_container
from rahnavard.services.session_security import Subject

TEST_DB_URL = "sqlite://"
TEST_PASSWORD = "Str0ng!Passphrase"


class FakeClock(Clock):
    """Clock that only moves when a test tells it to."""

    def __init__(self, start: float | None = None) -> None:
        self.current = float(int(time.time())) if start is None else start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    """Return a factory for Settings with field overrides."""

    def _make(**overrides: Any) -> Settings:
        overrides.setdefault("maintenance_enabled", False)
        overrides.setdefault("bcrypt_rounds", 4)
        return Settings(**overrides)

    return _make


@pytest.fixture()
def test_settings(make_settings: Callable[..., Settings]) -> Settings:
    """Provide a Settings instance aligned with runtime configuration."""
    return make_settings()


@pytest.fixture()
def container(
    session_factory: sessionmaker[Session], test_settings: Settings, clock: FakeClock
) -> SecurityContainer:
    return build_container(session_factory, config=test_settings, clock=clock)


@pytest.fixture()
def app(container: SecurityContainer) -> Iterator[FastAPI]:
    fastapi_app.state.security = container
    try:
        yield fastapi_app
    finally:
        del fastapi_app.state.security


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def create_subject(container: SecurityContainer) -> Callable[..., Subject]:
    """Return a factory that persists a rep with ``TEST_PASSWORD``."""

    def _create(username: str = "field.rep", role: str = "rep", **kwargs: Any) -> Subject:
        return container.subjects.create(
            username=username,
            email=kwargs.pop("email", f"{username}@example.org"),
            password_hash=hash_password(kwargs.pop("password", TEST_PASSWORD), rounds=4),
            full_name=kwargs.pop("full_name", "نماینده آزمایشی"),
            role=role,
        )

    return _create


@pytest.fixture()
def rep(create_subject: Callable[..., Subject]) -> Subject:
    return create_subject()


@pytest.fixture()
def admin(create_subject: Callable[..., Subject]) -> Subject:
    return create_subject("security.admin", role="admin")


@pytest.fixture()
def login(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Log in through the API and return the ``data`` payload of the envelope."""

    def _login(username: str = "field.rep", password: str = TEST_PASSWORD) -> dict[str, Any]:
        response = client.post(
            "/api/v1/rep/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _login
