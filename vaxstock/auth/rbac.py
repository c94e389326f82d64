"""
Roles y permisos por recurso.
Cada rol opera sobre un nivel de la jerarquía.
"""

import enum

from vaxstock.models.hierarchy import ScopeKind


class Role(str, enum.Enum):
    SUPERADMIN = "superadmin"
    NATIONAL = "national"
    REGIONAL = "regional"
    DISTRICT = "district"
    AGENT = "agent"


# Nivel de la jerarquía en el que actúa cada rol (SUPERADMIN actúa en cualquiera)
ROLE_SCOPE: dict[Role, ScopeKind] = {
    Role.NATIONAL: ScopeKind.NATIONAL,
    Role.REGIONAL: ScopeKind.REGIONAL,
    Role.DISTRICT: ScopeKind.DISTRICT,
    Role.AGENT: ScopeKind.HEALTH_CENTER,
}

STOCK_MANAGERS = [Role.SUPERADMIN, Role.NATIONAL, Role.REGIONAL, Role.DISTRICT, Role.AGENT]

# ── Permisos por recurso ─────────────────────────────
# Formato: {recurso: {acción: [roles permitidos]}}
PERMISSIONS: dict[str, dict[str, list[Role]]] = {
    "stock_lot": {
        "create": [Role.SUPERADMIN, Role.NATIONAL],
        "read": STOCK_MANAGERS,
        "delete": STOCK_MANAGERS,
    },
    "transfer": {
        "create": [Role.SUPERADMIN, Role.NATIONAL, Role.REGIONAL, Role.DISTRICT],
        "confirm": [Role.SUPERADMIN, Role.REGIONAL, Role.DISTRICT, Role.AGENT],
        "read": STOCK_MANAGERS,
    },
    "vaccination": {
        "create": [Role.SUPERADMIN, Role.AGENT],
        "read": STOCK_MANAGERS,
        "update": [Role.SUPERADMIN, Role.AGENT],
    },
    "vaccine_request": {
        "create": [Role.SUPERADMIN, Role.AGENT],
        "read": [Role.SUPERADMIN, Role.AGENT],
        "schedule": [Role.SUPERADMIN, Role.AGENT],
    },
}


def roles_for(resource: str, action: str) -> tuple[Role, ...]:
    return tuple(PERMISSIONS.get(resource, {}).get(action, []))
