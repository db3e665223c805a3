"""
Excepciones HTTP personalizadas para la API.

Taxonomía de errores del motor de odontogramas:
    ValidationException       → datos de entrada mal formados (422)
    NotFoundException         → paciente / odontograma / tratamiento inexistente (404)
    ConflictException         → colisión de versión o actualización concurrente (409)
    InvalidTransitionException → transición de estado de tratamiento ilegal (409)
"""

from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    """Error de credenciales inválidas (401)."""

    def __init__(self, detail: str = "Credenciales inválidas"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """Error de permisos insuficientes (403)."""

    def __init__(self, detail: str = "No tiene permisos para realizar esta acción"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409) — ej: versión de odontograma duplicada."""

    def __init__(self, detail: str = "El recurso ya existe"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


class InvalidTransitionException(HTTPException):
    """Transición de estado no permitida por la state machine (409)."""

    def __init__(self, current: str, requested: str, allowed: list[str] | None = None):
        allowed_text = ", ".join(allowed) if allowed else "ninguna (estado terminal)"
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Transición inválida de '{current}' a '{requested}'. "
                f"Transiciones válidas: {allowed_text}"
            ),
        )
        self.current = current
        self.requested = requested
