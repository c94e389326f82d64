"""
Schemas Pydantic para solicitudes de vacunación de los padres.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from vaxstock.models.vaccination import RequestStatus


class VaccineRequestCreate(BaseModel):
    vaccine_id: UUID
    vaccine_calendar_id: UUID | None = None
    dose: int | None = None
    notes: str | None = None


class VaccineRequestSchedule(BaseModel):
    scheduled_for: datetime
    notes: str | None = None


class VaccineRequestResponse(BaseModel):
    id: UUID
    child_id: UUID
    child_name: str | None = None
    vaccine_id: UUID
    vaccine_name: str | None = None
    vaccine_calendar_id: UUID | None = None
    dose: int
    status: RequestStatus
    requested_by: UUID | None = None
    requested_at: datetime
    scheduled_for: datetime | None = None
    scheduled_by: UUID | None = None
    scheduled_vaccination_id: UUID | None = None
    notes: str | None = None


class VaccineRequestListResponse(BaseModel):
    items: list[VaccineRequestResponse]
    total: int
    page: int
    size: int
    pages: int
