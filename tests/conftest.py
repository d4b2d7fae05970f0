"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import date, time
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.deps import get_audit_sink
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.medication import Medication, MedicationFrequency
from app.models.patient import Patient
from app.models.scheduling import ProgramSession
from app.schemas.audit_event import AuditEntry
from app.services.audit import DatabaseAuditSink
from app.services.dispensation import DispensationEligibilityEngine
from app.services.locks import KeyedLocks
from app.services.session_booking import SessionCapacityManager


# File-backed SQLite so concurrent sessions each get their own connection
@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture(scope="function")
async def async_engine(database_url: str):
    """Create async test database engine."""
    engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session


class RecordingAuditSink:
    """Audit sink that keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


class FailingAuditSink:
    """Audit sink whose backend is always down."""

    def __init__(self) -> None:
        self.attempts = 0

    async def append(self, entry: AuditEntry) -> None:
        self.attempts += 1
        raise ConnectionError("audit backend unavailable")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_audit_sink() -> FailingAuditSink:
    return FailingAuditSink()


@pytest.fixture
def locks() -> KeyedLocks:
    """Fresh lock registry so tests never share critical sections."""
    return KeyedLocks()


@pytest.fixture
def capacity_manager(
    async_session: AsyncSession,
    audit_sink: RecordingAuditSink,
    locks: KeyedLocks,
) -> SessionCapacityManager:
    return SessionCapacityManager(async_session, audit_sink=audit_sink, locks=locks)


@pytest.fixture
def clinic_tz() -> ZoneInfo:
    return ZoneInfo("Europe/London")


@pytest.fixture
def eligibility_engine(
    async_session: AsyncSession,
    audit_sink: RecordingAuditSink,
    clinic_tz: ZoneInfo,
) -> DispensationEligibilityEngine:
    return DispensationEligibilityEngine(
        async_session,
        audit_sink=audit_sink,
        locks=KeyedLocks(),
        tz=clinic_tz,
    )


@pytest.fixture
def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: DatabaseAuditSink(session_factory)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_program_session(
    async_session: AsyncSession,
) -> Callable[..., Awaitable[ProgramSession]]:
    """Factory for program sessions with a given capacity."""

    async def _make(
        capacity: int = 10,
        booked_count: int = 0,
        is_active: bool = True,
    ) -> ProgramSession:
        program_session = ProgramSession(
            title="Group therapy",
            capacity=capacity,
            booked_count=booked_count,
            scheduled_date=date(2024, 3, 4),
            start_time=time(10, 0),
            end_time=time(11, 0),
            location="Room 2",
            is_active=is_active,
        )
        async_session.add(program_session)
        await async_session.commit()
        await async_session.refresh(program_session)
        return program_session

    return _make


@pytest.fixture
async def program_session(make_program_session) -> ProgramSession:
    """Create an active session with room for two."""
    return await make_program_session(capacity=2)


@pytest.fixture
async def test_patient(async_session: AsyncSession) -> Patient:
    """Create a test patient."""
    patient = Patient(
        first_name="Test",
        last_name="Patient",
        is_active=True,
    )
    async_session.add(patient)
    await async_session.commit()
    await async_session.refresh(patient)
    return patient


@pytest.fixture
async def other_patient(async_session: AsyncSession) -> Patient:
    """Create a second patient."""
    patient = Patient(
        first_name="Other",
        last_name="Patient",
        is_active=True,
    )
    async_session.add(patient)
    await async_session.commit()
    await async_session.refresh(patient)
    return patient


@pytest.fixture
def make_medication(
    async_session: AsyncSession, test_patient: Patient
) -> Callable[..., Awaitable[Medication]]:
    """Factory for medications prescribed to the test patient."""

    async def _make(
        frequency: MedicationFrequency,
        program_wide: bool = False,
    ) -> Medication:
        medication = Medication(
            name=f"{frequency.value.capitalize()} medication",
            dose="10mg",
            frequency=frequency,
            patient_id=None if program_wide else test_patient.id,
        )
        async_session.add(medication)
        await async_session.commit()
        await async_session.refresh(medication)
        return medication

    return _make


@pytest.fixture
async def daily_medication(make_medication) -> Medication:
    return await make_medication(MedicationFrequency.DAILY)


@pytest.fixture
async def weekly_medication(make_medication) -> Medication:
    return await make_medication(MedicationFrequency.WEEKLY)


@pytest.fixture
async def monthly_medication(make_medication) -> Medication:
    return await make_medication(MedicationFrequency.MONTHLY)
