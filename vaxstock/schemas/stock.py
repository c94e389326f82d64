"""
Schemas Pydantic para el módulo de Stock.
Ámbitos, lotes y vista agregada por vacuna.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.stock import LotStatus


# ── Scope ─────────────────────────────────────────────


class ScopeRef(BaseModel):
    kind: ScopeKind
    id: UUID | None = Field(None, description="NULL solo para el nivel nacional")

    @model_validator(mode="after")
    def _check_id(self) -> "ScopeRef":
        if self.kind == ScopeKind.NATIONAL and self.id is not None:
            raise ValueError("El nivel nacional no lleva identificador")
        if self.kind != ScopeKind.NATIONAL and self.id is None:
            raise ValueError(f"El nivel {self.kind.value} requiere identificador")
        return self


# ── Lot Schemas ───────────────────────────────────────


class LotCreate(BaseModel):
    vaccine_id: UUID
    scope: ScopeRef
    quantity: int = Field(..., description="Dosis que ingresan al lote")
    expiration_date: date


class LotResponse(BaseModel):
    id: UUID
    vaccine_id: UUID
    vaccine_name: str | None = None
    scope_kind: ScopeKind
    scope_id: UUID | None = None
    original_quantity: int
    remaining_quantity: int
    held_quantity: int
    distributed_quantity: int
    expiration_date: date
    status: LotStatus
    source_lot_id: UUID | None = None
    derived_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class LotListResponse(BaseModel):
    items: list[LotResponse]
    total: int
    page: int
    size: int
    pages: int


# ── Aggregate View ────────────────────────────────────


class StockSummaryResponse(BaseModel):
    vaccine_id: UUID
    vaccine_name: str | None = None
    scope_kind: ScopeKind
    scope_id: UUID | None = None
    total_remaining: int = Field(0, description="Dosis restantes en lotes vigentes")
    held_total: int = 0
    lot_count: int = 0
    expired_lot_count: int = 0
    expired_quantity: int = 0
    nearest_expiration_date: date | None = None


class ScopeStockSummary(BaseModel):
    scope_kind: ScopeKind
    scope_id: UUID | None = None
    scope_name: str
    summaries: list[StockSummaryResponse]
