"""
Servicio de jerarquía — ámbitos propietarios de stock.

Nacional → Regional → Distrito → Centro de salud. Las transferencias solo
bajan un nivel, del padre a un hijo directo.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.exceptions import InvalidTransferScopeException, NotFoundException
from vaxstock.models.hierarchy import (
    SCOPE_LEVELS,
    District,
    HealthCenter,
    Region,
    ScopeKind,
)

NATIONAL_NAME = "Nivel nacional"

_MODEL_BY_KIND = {
    ScopeKind.REGIONAL: Region,
    ScopeKind.DISTRICT: District,
    ScopeKind.HEALTH_CENTER: HealthCenter,
}


@dataclass(frozen=True)
class Scope:
    """Nodo de la jerarquía; scope_id es None para el nivel nacional."""

    kind: ScopeKind
    scope_id: UUID | None = None

    @classmethod
    def national(cls) -> "Scope":
        return cls(ScopeKind.NATIONAL, None)

    def __str__(self) -> str:
        if self.scope_id is None:
            return self.kind.value
        return f"{self.kind.value}:{self.scope_id}"


def child_kind(kind: ScopeKind) -> ScopeKind | None:
    """Nivel inmediatamente inferior, o None para centros de salud."""
    index = SCOPE_LEVELS.index(kind)
    if index + 1 >= len(SCOPE_LEVELS):
        return None
    return SCOPE_LEVELS[index + 1]


async def _load_node(db: AsyncSession, scope: Scope):
    model = _MODEL_BY_KIND[scope.kind]
    return await db.get(model, scope.scope_id)


async def ensure_scope_exists(db: AsyncSession, scope: Scope) -> None:
    if scope.kind == ScopeKind.NATIONAL:
        return
    if scope.scope_id is None or await _load_node(db, scope) is None:
        raise NotFoundException("Ámbito", f"Ámbito {scope} no encontrado")


async def parent_of(db: AsyncSession, scope: Scope) -> Scope | None:
    """Padre directo de un ámbito; None para el nivel nacional."""
    if scope.kind == ScopeKind.NATIONAL:
        return None
    if scope.kind == ScopeKind.REGIONAL:
        return Scope.national()

    node = await _load_node(db, scope)
    if node is None:
        return None
    if scope.kind == ScopeKind.DISTRICT:
        return Scope(ScopeKind.REGIONAL, node.region_id)
    return Scope(ScopeKind.DISTRICT, node.district_id)


async def is_direct_child(db: AsyncSession, parent: Scope, child: Scope) -> bool:
    if child_kind(parent.kind) != child.kind:
        return False
    return await parent_of(db, child) == parent


async def validate_transfer_scopes(
    db: AsyncSession, from_scope: Scope, to_scope: Scope
) -> None:
    """Rechaza transferencias que no bajan exactamente un nivel."""
    if not await is_direct_child(db, from_scope, to_scope):
        raise InvalidTransferScopeException(
            f"El destino {to_scope} no es un hijo directo de {from_scope}"
        )


async def child_scopes(db: AsyncSession, parent: Scope) -> list[Scope]:
    """Hijos directos de un ámbito, ordenados por nombre."""
    if parent.kind == ScopeKind.NATIONAL:
        query = select(Region.id).order_by(Region.name)
        kind = ScopeKind.REGIONAL
    elif parent.kind == ScopeKind.REGIONAL:
        query = (
            select(District.id)
            .where(District.region_id == parent.scope_id)
            .order_by(District.name)
        )
        kind = ScopeKind.DISTRICT
    elif parent.kind == ScopeKind.DISTRICT:
        query = (
            select(HealthCenter.id)
            .where(HealthCenter.district_id == parent.scope_id)
            .order_by(HealthCenter.name)
        )
        kind = ScopeKind.HEALTH_CENTER
    else:
        return []

    result = await db.execute(query)
    return [Scope(kind, scope_id) for scope_id in result.scalars().all()]


async def scope_name(db: AsyncSession, scope: Scope) -> str:
    """Nombre legible del ámbito para notificaciones y reportes."""
    if scope.kind == ScopeKind.NATIONAL:
        return NATIONAL_NAME
    node = await _load_node(db, scope)
    return node.name if node else str(scope)
