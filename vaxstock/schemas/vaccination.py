"""
Schemas Pydantic para la agenda de vacunación.
Citas programadas, dosis aplicadas y línea de tiempo del niño.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from vaxstock.models.child import ChildStatus


# ── ScheduledVaccination ──────────────────────────────


class ScheduledVaccinationCreate(BaseModel):
    child_id: UUID
    vaccine_id: UUID
    vaccine_calendar_id: UUID | None = None
    scheduled_for: datetime
    dose: int | None = Field(None, description="Si se omite, se resuelve automáticamente")
    notes: str | None = None


class ScheduledVaccinationUpdate(BaseModel):
    scheduled_for: datetime | None = None
    vaccine_id: UUID | None = None
    vaccine_calendar_id: UUID | None = None
    notes: str | None = None


class ReservationResponse(BaseModel):
    lot_id: UUID
    quantity: int

    model_config = {"from_attributes": True}


class ScheduledVaccinationResponse(BaseModel):
    id: UUID
    child_id: UUID
    vaccine_id: UUID
    vaccine_name: str | None = None
    vaccine_calendar_id: UUID | None = None
    health_center_id: UUID
    scheduled_for: datetime
    dose: int
    planner_id: UUID | None = None
    notes: str | None = None
    reservations: list[ReservationResponse] = []


# ── CompletedVaccination ──────────────────────────────


class CompleteVaccinationRequest(BaseModel):
    notes: str | None = None


class CompletedVaccinationResponse(BaseModel):
    id: UUID
    child_id: UUID
    vaccine_id: UUID
    vaccine_name: str | None = None
    vaccine_calendar_id: UUID | None = None
    dose: int
    administered_at: datetime
    administered_by: UUID | None = None
    notes: str | None = None


# ── Timeline ──────────────────────────────────────────


class TimelineEntryResponse(BaseModel):
    kind: str
    vaccine_id: UUID
    vaccine_calendar_id: UUID | None = None
    dose: int
    entry_date: date | None = None


class ChildTimelineResponse(BaseModel):
    child_id: UUID
    status: ChildStatus
    next_appointment_at: datetime | None = None
    next_vaccine_id: UUID | None = None
    entries: list[TimelineEntryResponse]
