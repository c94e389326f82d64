"""
Fixtures compartidas para Pytest.
Configura base de datos de test, clientes HTTP y datos de referencia
(jerarquía, vacunas, niños y lotes).
"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from vaxstock.auth.dependencies import Principal, get_current_principal
from vaxstock.auth.rbac import Role
from vaxstock.core.dates import today
from vaxstock.database import Base, get_db
from vaxstock.main import app
from vaxstock.models.child import Child, Gender
from vaxstock.models.hierarchy import District, HealthCenter, Region, ScopeKind
from vaxstock.models.vaccine import (
    AgeUnit,
    GenderRestriction,
    Vaccine,
    VaccineCalendar,
    VaccineCalendarDose,
)
from vaxstock.services import notification_service
from vaxstock.services.hierarchy_service import Scope
from vaxstock.tasks.celery_app import celery_app

# ── Engine de test (SQLite async) ─────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)

# Las notificaciones se ejecutan en proceso, sin broker
celery_app.conf.task_always_eager = True
celery_app.conf.task_eager_propagates = False


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Fábrica para abrir una segunda sesión (otra transacción concurrente)."""
    return test_session_factory


# ── Jerarquía ─────────────────────────────────────────


@pytest_asyncio.fixture
async def region(db_session: AsyncSession) -> Region:
    region = Region(id=uuid4(), name="Región Norte")
    db_session.add(region)
    await db_session.commit()
    return region


@pytest_asyncio.fixture
async def district(db_session: AsyncSession, region: Region) -> District:
    district = District(id=uuid4(), region_id=region.id, name="Distrito Centro")
    db_session.add(district)
    await db_session.commit()
    return district


@pytest_asyncio.fixture
async def health_center(db_session: AsyncSession, district: District) -> HealthCenter:
    center = HealthCenter(id=uuid4(), district_id=district.id, name="Centro de Salud San José")
    db_session.add(center)
    await db_session.commit()
    return center


@pytest.fixture
def national_scope() -> Scope:
    return Scope.national()


@pytest.fixture
def region_scope(region: Region) -> Scope:
    return Scope(ScopeKind.REGIONAL, region.id)


@pytest.fixture
def district_scope(district: District) -> Scope:
    return Scope(ScopeKind.DISTRICT, district.id)


@pytest.fixture
def center_scope(health_center: HealthCenter) -> Scope:
    return Scope(ScopeKind.HEALTH_CENTER, health_center.id)


# ── Vacunas y niños ───────────────────────────────────


@pytest_asyncio.fixture
async def vaccine(db_session: AsyncSession) -> Vaccine:
    vaccine = Vaccine(id=uuid4(), name="Pentavalente", required_dose_count=3)
    db_session.add(vaccine)
    await db_session.commit()
    return vaccine


@pytest_asyncio.fixture
async def hpv_vaccine(db_session: AsyncSession) -> Vaccine:
    vaccine = Vaccine(
        id=uuid4(),
        name="VPH",
        required_dose_count=2,
        gender_restriction=GenderRestriction.FEMALE,
    )
    db_session.add(vaccine)
    await db_session.commit()
    return vaccine


@pytest_asyncio.fixture
async def child(db_session: AsyncSession, health_center: HealthCenter) -> Child:
    child = Child(
        id=uuid4(),
        health_center_id=health_center.id,
        first_name="Mateo",
        last_name="Quispe",
        gender=Gender.MALE,
        birth_date=today() - timedelta(days=120),
    )
    db_session.add(child)
    await db_session.commit()
    return child


# ── Calendario ────────────────────────────────────


@pytest_asyncio.fixture
async def calendar(db_session: AsyncSession, vaccine: Vaccine) -> VaccineCalendar:
    """Ventana de 2 a 6 meses con las dosis 1 y 2 de la vacuna."""
    calendar = VaccineCalendar(
        id=uuid4(),
        description="Esquema de 2 a 6 meses",
        age_unit=AgeUnit.MONTHS,
        min_age=2,
        max_age=6,
    )
    db_session.add(calendar)
    await db_session.flush()
    db_session.add_all([
        VaccineCalendarDose(calendar_id=calendar.id, vaccine_id=vaccine.id, dose=1),
        VaccineCalendarDose(calendar_id=calendar.id, vaccine_id=vaccine.id, dose=2),
    ])
    await db_session.commit()
    return calendar


# ── API ───────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test."""

    async def _get_test_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Reemplaza al usuario autenticado por un Principal fijo."""

    def _login(role: Role, scope: Scope) -> Principal:
        principal = Principal(uuid4(), role, scope.kind, scope.scope_id)
        app.dependency_overrides[get_current_principal] = lambda: principal
        return principal

    return _login


# ── Notificaciones ────────────────────────────────────


@pytest.fixture
def events(monkeypatch) -> list[tuple[str, dict]]:
    """Captura los eventos publicados en lugar de encolarlos."""
    captured: list[tuple[str, dict]] = []

    def _capture(event, payload):
        captured.append((event, payload))
        return True

    monkeypatch.setattr(notification_service, "dispatch", _capture)
    return captured
