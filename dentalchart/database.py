"""
Configuración de base de datos con SQLAlchemy 2.0 async.
Incluye setup de RLS (Row-Level Security) para multi-tenancy.
"""

from typing import AsyncGenerator
from uuid import UUID

from sqlalchemy import JSON, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dentalchart.config import get_settings

settings = get_settings()

# JSONB en PostgreSQL, JSON genérico en SQLite (tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ── Engine async ─────────────────────────────────────
_engine_kwargs: dict = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
if settings.DATABASE_URL.startswith("postgresql"):
    _engine_kwargs.update(pool_size=20, max_overflow=10)

engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs)

# ── Session factory ──────────────────────────────────
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base declarativa ─────────────────────────────────
class Base(DeclarativeBase):
    pass


# ── RLS: setear tenant en la sesión ──────────────────
async def set_tenant_context(session: AsyncSession, clinic_id: UUID) -> None:
    """
    Setea la variable de sesión de PostgreSQL `app.clinic_id`
    para que las políticas RLS filtren automáticamente por clínica.
    En otros motores (SQLite de tests) no hace nada.
    """
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return
    validated_clinic_id = UUID(str(clinic_id))
    await session.execute(
        text(f"SET LOCAL app.clinic_id = '{validated_clinic_id}'")
    )


# ── Dependency: sesión de DB ─────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency de FastAPI que provee una sesión de base de datos.
    Cada request es una transacción: commit al final, rollback ante
    cualquier error para no dejar escrituras parciales.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
