"""Pytest configuration and fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EXTERNAL_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("SWEEP_ENABLED", "false")

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from consent_gate.api.deps import (
    get_anchoring_service,
    get_payment_service,
    get_provider_directory,
    get_session_factory,
)
from consent_gate.db.base import Base
from consent_gate.db.session import get_db
from consent_gate.main import app
from consent_gate.models.medical_file import MedicalFile
from consent_gate.services.audit import AuditHealth
from consent_gate.services.file_store import DatabaseFileStore
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.payment_gate import StaticProviderDirectory
from consent_gate.services.payments import SimulatedPaymentService
from tests.factories import (
    ADMIN_ID,
    PATIENT_ID,
    PROVIDER_ID,
    FlakyAnchoringService,
    auth_headers,
)

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (audit and inbox writers)."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def payment_service() -> SimulatedPaymentService:
    return SimulatedPaymentService()


@pytest.fixture
def anchoring() -> FlakyAnchoringService:
    return FlakyAnchoringService()


@pytest.fixture
def audit_health() -> AuditHealth:
    return AuditHealth()


@pytest.fixture
def directory() -> StaticProviderDirectory:
    return StaticProviderDirectory(staked_provider_ids=set())


@pytest.fixture
def gateway(
    async_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    anchoring: FlakyAnchoringService,
    payment_service: SimulatedPaymentService,
    directory: StaticProviderDirectory,
    audit_health: AuditHealth,
) -> AccessControlGateway:
    """All access control services wired on the test session."""
    return AccessControlGateway(
        async_session,
        session_factory,
        anchoring=anchoring,
        payment_service=payment_service,
        directory=directory,
        audit_health=audit_health,
    )


@pytest.fixture
async def lab_file(async_session: AsyncSession) -> MedicalFile:
    """A lab-results file belonging to the test patient."""
    return await DatabaseFileStore(async_session).register(
        patient_id=PATIENT_ID,
        category="lab-results",
        content_hash="Qm" + "1" * 44,
        name="cbc-2026-09.pdf",
        mime_type="application/pdf",
        size_bytes=20480,
    )


@pytest.fixture
async def imaging_file(async_session: AsyncSession) -> MedicalFile:
    """An imaging file belonging to the test patient."""
    return await DatabaseFileStore(async_session).register(
        patient_id=PATIENT_ID,
        category="imaging",
        content_hash="Qm" + "2" * 44,
        name="chest-xray.dcm",
    )


@pytest.fixture(scope="function")
def client(
    async_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    payment_service: SimulatedPaymentService,
    anchoring: FlakyAnchoringService,
    directory: StaticProviderDirectory,
) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_anchoring_service] = lambda: anchoring
    app.dependency_overrides[get_provider_directory] = lambda: directory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def provider_headers() -> dict[str, str]:
    return auth_headers(PROVIDER_ID, "provider")


@pytest.fixture
def patient_headers() -> dict[str, str]:
    return auth_headers(PATIENT_ID, "patient")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN_ID, "admin")
