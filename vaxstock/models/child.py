"""
Modelo Child — niño vacunado en un centro de salud.

Guarda en caché el puntero a su próxima cita (la más temprana programada),
recalculado por los servicios de agenda en la misma transacción.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaxstock.database import Base


class Gender(str, enum.Enum):
    """Sexo del niño."""
    MALE = "male"
    FEMALE = "female"


class ChildStatus(str, enum.Enum):
    """Estado de vacunación del niño."""
    UP_TO_DATE = "up_to_date"
    BEHIND = "behind"


class Child(Base):
    __tablename__ = "children"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    health_center_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("health_centers.id"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(150), nullable=False)
    last_name: Mapped[str] = mapped_column(String(150), nullable=False)
    gender: Mapped[Gender] = mapped_column(
        Enum(Gender, values_callable=lambda e: [x.value for x in e]),
        nullable=False
    )
    birth_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ChildStatus] = mapped_column(
        Enum(ChildStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=ChildStatus.UP_TO_DATE
    )

    # Próxima cita (caché)
    next_appointment_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    next_vaccine_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id")
    )
    next_planner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    health_center: Mapped["HealthCenter"] = relationship("HealthCenter")  # noqa: F821

    __table_args__ = (
        Index("idx_child_health_center", "health_center_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Child {self.full_name}>"
