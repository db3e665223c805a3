"""
Definición de permisos RBAC por rol para el odontograma.
Mapea qué acciones puede realizar cada rol.
"""

from dentalchart.models.user import UserRole

# ── Permisos por recurso ─────────────────────────────
# Formato: {recurso: {acción: [roles permitidos]}}
PERMISSIONS: dict[str, dict[str, list[UserRole]]] = {
    "odontogram": {
        "create": [UserRole.SUPER_ADMIN, UserRole.DOCTOR],
        "read": [UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR],
        "archive": [UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR],
        # Sin delete: las versiones sólo se archivan
    },
    "treatment_plan": {
        "read": [UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR, UserRole.RECEPTIONIST],
        "update": [UserRole.SUPER_ADMIN, UserRole.DOCTOR],
    },
    "completed_treatment": {
        "create": [UserRole.SUPER_ADMIN, UserRole.DOCTOR],
        # INSERT-only: sin update ni delete
    },
    "report": {
        "read": [UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR],
    },
}


def has_permission(role: UserRole, resource: str, action: str) -> bool:
    """Verifica si un rol tiene permiso para una acción en un recurso."""
    resource_perms = PERMISSIONS.get(resource, {})
    allowed_roles = resource_perms.get(action, [])
    return role in allowed_roles
