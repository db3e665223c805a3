"""
Fixtures compartidas para Pytest.
Configura base de datos de test (SQLite async), clientes HTTP y tokens.
"""

import os

# Antes de importar la app: SQLite de test y JWT simétrico
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-odontograma")
os.environ.setdefault("APP_ENV", "testing")

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from dentalchart.auth.jwt import create_access_token
from dentalchart.database import Base, get_db
from dentalchart.main import app
from dentalchart.models.clinic import Clinic
from dentalchart.models.patient import Patient
from dentalchart.models.user import User, UserRole

# ── Engine de test ───────────────────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


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


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    Cliente HTTP de test. Cada request usa su propia sesión y
    transacción, igual que get_db en producción.
    """

    async def _get_test_db():
        async with test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Datos base ───────────────────────────────────────

@pytest_asyncio.fixture
async def test_clinic(db_session: AsyncSession) -> Clinic:
    clinic = Clinic(id=uuid4(), name="Clínica Dental Test", branch_name="Miraflores")
    db_session.add(clinic)
    await db_session.commit()
    return clinic


async def _make_user(
    db: AsyncSession, clinic: Clinic, role: UserRole, email: str, first_name: str
) -> User:
    user = User(
        id=uuid4(),
        clinic_id=clinic.id,
        email=email,
        role=role,
        first_name=first_name,
        last_name="Test",
        license_number="COP-12345" if role == UserRole.DOCTOR else None,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def test_doctor(db_session: AsyncSession, test_clinic: Clinic) -> User:
    return await _make_user(
        db_session, test_clinic, UserRole.DOCTOR, "doctor@test.com", "Ana"
    )


@pytest_asyncio.fixture
async def test_receptionist(db_session: AsyncSession, test_clinic: Clinic) -> User:
    return await _make_user(
        db_session, test_clinic, UserRole.RECEPTIONIST, "recepcion@test.com", "Luis"
    )


@pytest_asyncio.fixture
async def test_patient(db_session: AsyncSession, test_clinic: Clinic) -> Patient:
    patient = Patient(
        id=uuid4(),
        clinic_id=test_clinic.id,
        first_name="María",
        last_name="Quispe",
    )
    db_session.add(patient)
    await db_session.commit()
    return patient


def _auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.clinic_id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def doctor_headers(test_doctor: User) -> dict[str, str]:
    return _auth_headers(test_doctor)


@pytest_asyncio.fixture
async def receptionist_headers(test_receptionist: User) -> dict[str, str]:
    return _auth_headers(test_receptionist)


@pytest_asyncio.fixture
async def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory de sesiones de test, para código que abre sus propias sesiones."""
    return test_session_factory
