"""
Gestión de JWT. RS256 (claves asimétricas) en producción; HS256 con
secreto compartido en desarrollo/tests.

Este servicio no autentica usuarios: sólo valida los access tokens
emitidos por el servicio de identidad y confía en su contenido.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from dentalchart.config import get_settings

settings = get_settings()


class TokenType:
    ACCESS = "access"
    REFRESH = "refresh"


def create_access_token(
    user_id: UUID,
    clinic_id: UUID,
    role: str,
    extra_claims: dict | None = None,
) -> str:
    """Crea un access token JWT (corta duración)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "clinic_id": str(clinic_id),
        "role": role,
        "type": TokenType.ACCESS,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(
        payload,
        settings.jwt_signing_key,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict:
    """
    Decodifica y valida un token JWT.
    Lanza jwt.InvalidTokenError si es inválido o expiró.
    """
    return jwt.decode(
        token,
        settings.jwt_verification_key,
        algorithms=[settings.JWT_ALGORITHM],
    )
