"""
Schemas Pydantic para transferencias de stock entre niveles.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.stock import TransferCancelReason, TransferStatus
from vaxstock.schemas.stock import ScopeRef


class TransferCreate(BaseModel):
    vaccine_id: UUID
    from_scope: ScopeRef
    to_scope: ScopeRef
    quantity: int


class TransferAllocationResponse(BaseModel):
    lot_id: UUID | None = None
    quantity: int
    derived_lot_id: UUID | None = None

    model_config = {"from_attributes": True}


class TransferResponse(BaseModel):
    id: UUID
    vaccine_id: UUID
    vaccine_name: str | None = None
    from_kind: ScopeKind
    from_id: UUID | None = None
    from_name: str | None = None
    to_kind: ScopeKind
    to_id: UUID
    to_name: str | None = None
    quantity: int
    status: TransferStatus
    allocations: list[TransferAllocationResponse] = []
    created_by: UUID | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
    confirmed_by: UUID | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancel_reason: TransferCancelReason | None = None


class TransferListResponse(BaseModel):
    items: list[TransferResponse]
    total: int
    page: int
    size: int
    pages: int
