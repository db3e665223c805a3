"""
Dependencies de FastAPI para autenticación y contexto de tenant.
"""

from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentalchart.auth.jwt import TokenType, decode_token
from dentalchart.auth.rbac import has_permission
from dentalchart.core.exceptions import CredentialsException, ForbiddenException
from dentalchart.database import get_db, set_tenant_context
from dentalchart.models.user import User

# ── Security scheme ──────────────────────────────────
security = HTTPBearer()


# ── Token payload tipado ─────────────────────────────
class TokenPayload:
    """Datos extraídos del token JWT decodificado."""

    def __init__(self, payload: dict):
        self.user_id: UUID = UUID(payload["sub"])
        self.clinic_id: UUID = UUID(payload["clinic_id"])
        self.role: str = payload.get("role", "")
        self.token_type: str = payload.get("type", TokenType.ACCESS)


# ── Obtener usuario actual ───────────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency que:
    1. Decodifica el JWT del header Authorization
    2. Carga el usuario de la DB (el doctor que firmará los cambios)
    3. Setea el contexto RLS de tenant
    """
    try:
        payload = decode_token(credentials.credentials)
        token_data = TokenPayload(payload)
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise CredentialsException("Token inválido o expirado")

    if token_data.token_type != TokenType.ACCESS:
        raise CredentialsException("Tipo de token inválido")

    result = await db.execute(
        select(User).where(
            User.id == token_data.user_id,
            User.clinic_id == token_data.clinic_id,
            User.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise CredentialsException("Usuario no encontrado o inactivo")

    await set_tenant_context(db, user.clinic_id)

    return user


# ── Factory de dependency con permisos ───────────────
def require_permission(resource: str, action: str):
    """
    Factory que crea un dependency que verifica el permiso RBAC del rol.

    Uso:
        @router.post("")
        async def create(user: User = Depends(require_permission("odontogram", "create"))):
            ...
    """

    async def _check_permission(
        user: User = Depends(get_current_user),
    ) -> User:
        if not has_permission(user.role, resource, action):
            raise ForbiddenException(
                f"El rol '{user.role.value}' no puede '{action}' sobre '{resource}'"
            )
        return user

    return _check_permission
