"""
Dependencies de FastAPI para autenticación y ámbito del usuario.
"""

from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vaxstock.auth.jwt import TokenType, decode_token
from vaxstock.auth.rbac import ROLE_SCOPE, Role
from vaxstock.core.exceptions import CredentialsException, ForbiddenException
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.services.hierarchy_service import Scope

# ── Security scheme ──────────────────────────────────
security = HTTPBearer()


# ── Principal tipado ─────────────────────────────────
@dataclass(frozen=True)
class Principal:
    """Usuario autenticado y el nodo de la jerarquía desde el que actúa."""

    user_id: UUID
    role: Role
    scope_kind: ScopeKind
    scope_id: UUID | None = None

    @property
    def scope(self) -> Scope:
        return Scope(self.scope_kind, self.scope_id)

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN

    @classmethod
    def from_payload(cls, payload: dict) -> "Principal":
        try:
            role = Role(payload["role"])
            scope_kind = ScopeKind(payload.get("scope_kind") or ROLE_SCOPE[role].value)
            scope_id = UUID(payload["scope_id"]) if payload.get("scope_id") else None
            return cls(UUID(payload["sub"]), role, scope_kind, scope_id)
        except (KeyError, ValueError):
            raise CredentialsException("Token sin ámbito válido")


# ── Obtener principal (sin consultar DB) ─────────────
async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Decodifica el JWT del header Authorization y arma el Principal."""
    try:
        payload = decode_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise CredentialsException("Token inválido o expirado")

    if payload.get("type", TokenType.ACCESS) != TokenType.ACCESS:
        raise CredentialsException("Tipo de token inválido")

    return Principal.from_payload(payload)


# ── Factory de dependency con roles ──────────────────
def require_role(*allowed_roles: Role):
    """
    Factory que crea un dependency que verifica el rol del usuario.

    Uso:
        @router.post("/transfers")
        async def create(user: Principal = Depends(require_role(Role.NATIONAL, Role.REGIONAL))):
            ...
    """

    async def _check_role(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role not in allowed_roles:
            raise ForbiddenException(
                f"Se requiere uno de los roles: {', '.join(r.value for r in allowed_roles)}"
            )
        return principal

    return _check_role


def acting_scope(principal: Principal) -> Scope | None:
    """Ámbito a verificar en operaciones de transferencia; SUPERADMIN no se restringe."""
    return None if principal.is_superadmin else principal.scope


def ensure_scope_access(principal: Principal, scope: Scope) -> None:
    if principal.is_superadmin:
        return
    if principal.scope != scope:
        raise ForbiddenException("No tiene acceso a este ámbito")
