import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from testcontainers.postgres import PostgresContainer

from clearledger.domain.organization_enums import OrganizationTier
from clearledger.domain.roles import PrincipalRole
from clearledger.infrastructure.db.session import get_db
from clearledger.main import app
from tests.helpers.factories import create_clearance_period, create_organization, create_student


class FakeRedisClient:
    """In-memory stand-in for the handful of Redis commands the cache layer issues."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def setex(self, key: str, _ttl: int, value: str) -> bool:
        self.values[key] = value
        return True

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    def incr(self, key: str) -> int:
        value = int(self.values.get(key, "0")) + 1
        self.values[key] = str(value)
        return value

    def eval(self, _script: str, _numkeys: int, key: str, token: str) -> int:
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0


@pytest.fixture(scope="session")
def postgres_url():
    with PostgresContainer("postgres:16-alpine") as postgres:
        url = postgres.get_connection_url().replace("postgresql://", "postgresql+psycopg2://", 1)
        yield url


def run_migrations(database_url: str) -> None:
    from clearledger.config import settings

    os.environ["DATABASE_URL"] = database_url
    settings.database_url = database_url
    alembic_config = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    command.upgrade(alembic_config, "head")


@pytest.fixture(scope="session")
def engine(postgres_url):
    engine = create_engine(postgres_url, future=True)
    with engine.begin() as connection:
        connection.execute(text("DROP SCHEMA public CASCADE"))
        connection.execute(text("CREATE SCHEMA public"))
    run_migrations(database_url=postgres_url)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(autouse=True)
def clean_database(engine):
    with engine.begin() as connection:
        tables = connection.execute(
            text(
                """
                SELECT tablename
                FROM pg_tables
                WHERE schemaname = 'public' AND tablename <> 'alembic_version'
                ORDER BY tablename
                """
            )
        ).scalars().all()
        if tables:
            quoted_tables = ", ".join(f'"{table}"' for table in tables)
            connection.execute(text(f"TRUNCATE TABLE {quoted_tables} RESTART IDENTITY CASCADE"))


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedisClient()
    monkeypatch.setattr("clearledger.infrastructure.cache.cache_service.get_redis_client", lambda: client)
    monkeypatch.setattr("clearledger.interfaces.api.v1.routes.ping.get_redis_client", lambda: client)
    return client


@pytest.fixture
def db_session(engine, fake_redis):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seeded_orgs(db_session):
    """Two organizations with one enrolled student each and an open clearance period."""
    north = create_organization(db_session, "North Robotics Club", tier=OrganizationTier.premium)
    south = create_organization(db_session, "South Debate Society", tier=OrganizationTier.basic)
    north_period = create_clearance_period(db_session, organization_id=north.id, name="AY 2026 S1")
    south_period = create_clearance_period(db_session, organization_id=south.id, name="AY 2026 S1")
    alice = create_student(db_session, organization_id=north.id, student_number="N-001", subject_id=501)
    bob = create_student(db_session, organization_id=north.id, student_number="N-002", subject_id=502)
    carol = create_student(db_session, organization_id=south.id, student_number="S-001", subject_id=601)

    return {
        "north": north,
        "south": south,
        "north_period": north_period,
        "south_period": south_period,
        "alice": alice,
        "bob": bob,
        "carol": carol,
        "principals": {
            "platform_admin": (1, PrincipalRole.platform_admin, None),
            "north_admin": (101, PrincipalRole.org_admin, north.id),
            "north_manager": (102, PrincipalRole.org_manager, north.id),
            "north_staff": (103, PrincipalRole.org_staff, north.id),
            "north_alice": (501, PrincipalRole.student, north.id),
            "north_bob": (502, PrincipalRole.student, north.id),
            "south_admin": (201, PrincipalRole.org_admin, south.id),
        },
    }
