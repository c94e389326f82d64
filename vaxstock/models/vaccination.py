"""
Modelos de Vacunación — agenda, historial y solicitudes por niño.

ScheduledVaccination: cita programada (dosis renumerable por el secuenciador).
CompletedVaccination: dosis aplicada; su número es inmutable.
ChildVaccineBucket: entrada DUE / LATE / OVERDUE del calendario del niño.
VaccineRequest: solicitud iniciada por el padre/madre.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaxstock.core.dates import utcnow
from vaxstock.database import Base


class BucketKind(str, enum.Enum):
    """Tipo de entrada de calendario persistida."""
    DUE = "due"
    LATE = "late"
    OVERDUE = "overdue"


class RequestStatus(str, enum.Enum):
    """Estado de una solicitud de vacunación."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


# ── ScheduledVaccination ──────────────────────────────


class ScheduledVaccination(Base):
    __tablename__ = "scheduled_vaccinations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("children.id"), nullable=False
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    vaccine_calendar_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccine_calendars.id")
    )
    health_center_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("health_centers.id"), nullable=False,
        comment="Centro cuyo stock respalda la cita"
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    dose: Mapped[int] = mapped_column(Integer, nullable=False)
    planner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relaciones
    vaccine: Mapped["Vaccine"] = relationship("Vaccine", lazy="joined")  # noqa: F821

    __table_args__ = (
        CheckConstraint("dose > 0", name="ck_scheduled_dose_positive"),
        Index("idx_scheduled_child_vaccine", "child_id", "vaccine_id", "scheduled_for"),
        Index("idx_scheduled_for", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledVaccination child={self.child_id} dose={self.dose}>"


# ── CompletedVaccination ──────────────────────────────


class CompletedVaccination(Base):
    __tablename__ = "completed_vaccinations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("children.id"), nullable=False
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    vaccine_calendar_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccine_calendars.id")
    )
    dose: Mapped[int] = mapped_column(
        Integer, nullable=False,
        comment="Número de dosis aplicada (1, 2, 3...)"
    )
    administered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    administered_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    vaccine: Mapped["Vaccine"] = relationship("Vaccine", lazy="joined")  # noqa: F821

    __table_args__ = (
        Index("idx_completed_child_vaccine", "child_id", "vaccine_id"),
    )

    def __repr__(self) -> str:
        return f"<CompletedVaccination child={self.child_id} dose={self.dose}>"


# ── ChildVaccineBucket ────────────────────────────────


class ChildVaccineBucket(Base):
    __tablename__ = "child_vaccine_buckets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("children.id"), nullable=False
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    vaccine_calendar_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccine_calendars.id")
    )
    kind: Mapped[BucketKind] = mapped_column(
        Enum(BucketKind, values_callable=lambda e: [x.value for x in e]),
        nullable=False
    )
    dose: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("idx_bucket_child_vaccine", "child_id", "vaccine_id", "kind"),
    )

    def __repr__(self) -> str:
        return f"<ChildVaccineBucket {self.kind.value} dose={self.dose}>"


# ── VaccineRequest ────────────────────────────────────


class VaccineRequest(Base):
    __tablename__ = "vaccine_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("children.id"), nullable=False
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    vaccine_calendar_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccine_calendars.id")
    )
    dose: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=RequestStatus.PENDING
    )
    requested_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Programación
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    scheduled_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    scheduled_vaccination_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("scheduled_vaccinations.id", ondelete="SET NULL"),
    )
    notes: Mapped[str | None] = mapped_column(Text)

    # Relaciones
    vaccine: Mapped["Vaccine"] = relationship("Vaccine", lazy="joined")  # noqa: F821
    child: Mapped["Child"] = relationship("Child", lazy="joined")  # noqa: F821

    __table_args__ = (
        CheckConstraint("dose > 0", name="ck_request_dose_positive"),
        Index("idx_request_child_vaccine", "child_id", "vaccine_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<VaccineRequest {self.status.value} dose={self.dose}>"
