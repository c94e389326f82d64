"""
Modelos de Vacunas — catálogo de vacunas y calendario de vacunación.

Vaccine: vacuna con número de dosis requeridas y restricción por sexo.
VaccineCalendar: ventana de edad en la que se aplican ciertas dosis.
VaccineCalendarDose: asignación (calendario, vacuna, dosis).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaxstock.database import Base


class GenderRestriction(str, enum.Enum):
    """Restricción de sexo de una vacuna."""
    NONE = "none"
    MALE = "male"
    FEMALE = "female"


class AgeUnit(str, enum.Enum):
    """Unidad de edad usada por el calendario."""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class Vaccine(Base):
    __tablename__ = "vaccines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
        comment="Nombre de la vacuna (ej: Pentavalente)"
    )
    description: Mapped[str | None] = mapped_column(Text)
    required_dose_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
        comment="Número total de dosis del esquema"
    )
    gender_restriction: Mapped[GenderRestriction] = mapped_column(
        Enum(GenderRestriction, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=GenderRestriction.NONE
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("required_dose_count > 0", name="ck_vaccine_required_dose_count"),
    )

    def __repr__(self) -> str:
        return f"<Vaccine {self.name} ({self.required_dose_count} dosis)>"


class VaccineCalendar(Base):
    __tablename__ = "vaccine_calendars"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    age_unit: Mapped[AgeUnit] = mapped_column(
        Enum(AgeUnit, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=AgeUnit.MONTHS
    )
    min_age: Mapped[int | None] = mapped_column(Integer)
    max_age: Mapped[int | None] = mapped_column(Integer)
    specific_age: Mapped[int | None] = mapped_column(
        Integer, comment="Edad exacta recomendada; prevalece sobre min_age"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    doses: Mapped[list["VaccineCalendarDose"]] = relationship(
        "VaccineCalendarDose", back_populates="calendar", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<VaccineCalendar {self.description}>"


class VaccineCalendarDose(Base):
    __tablename__ = "vaccine_calendar_doses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    calendar_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccine_calendars.id"), nullable=False
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    dose: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relaciones
    calendar: Mapped["VaccineCalendar"] = relationship(
        "VaccineCalendar", back_populates="doses"
    )
    vaccine: Mapped["Vaccine"] = relationship("Vaccine", lazy="joined")

    __table_args__ = (
        UniqueConstraint(
            "calendar_id", "vaccine_id", "dose", name="uq_calendar_vaccine_dose"
        ),
        Index("idx_calendar_dose_vaccine", "vaccine_id"),
    )

    def __repr__(self) -> str:
        return f"<VaccineCalendarDose vaccine={self.vaccine_id} dose={self.dose}>"
