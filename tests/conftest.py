import os
import sys
from pathlib import Path

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

from tableforge.config import Settings  # noqa: E402
from tableforge.database import Base, get_db  # noqa: E402
from tableforge.main import app  # noqa: E402
from tableforge.models import ConnectionProfile, Project  # noqa: E402
from tableforge.services.connection_pool import (  # noqa: E402
    ConnectionPoolRegistry,
    get_pool_registry,
)
from tableforge.services.table_service import TableService  # noqa: E402


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    connection = engine.connect()

    TestingSessionLocal = _create_test_sessionmaker(connection)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        connection.close()


@pytest.fixture()
def settings() -> Settings:
    return Settings(pool_size=2, pool_max_overflow=1, physical_name_attempts=3)


@pytest.fixture()
def registry(settings: Settings) -> Generator[ConnectionPoolRegistry, None, None]:
    registry = ConnectionPoolRegistry(settings)
    try:
        yield registry
    finally:
        registry.close_all()


@pytest.fixture()
def profile(db_session: Session) -> ConnectionProfile:
    # An in-memory sqlite target: every registry gets a fresh tenant database.
    profile = ConnectionProfile(name="tenant-db", engine="sqlite", database_name=None)
    db_session.add(profile)
    db_session.commit()
    return profile


@pytest.fixture()
def project(db_session: Session, profile: ConnectionProfile) -> Project:
    project = Project(name="Acme", description="Test project", connection_profile_id=profile.id)
    db_session.add(project)
    db_session.commit()
    return project


@pytest.fixture()
def service(db_session: Session, registry: ConnectionPoolRegistry, settings: Settings) -> TableService:
    return TableService(db_session, registry, settings)


@pytest.fixture()
def tenant_engine(registry: ConnectionPoolRegistry, profile: ConnectionProfile):
    return registry.get_pool(profile)


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(
    db_session: Session, registry: ConnectionPoolRegistry
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pool_registry] = lambda: registry

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_pool_registry, None)
