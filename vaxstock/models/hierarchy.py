"""
Modelos de la jerarquía administrativa — Regiones, Distritos, Centros de salud.

El nivel NACIONAL es la raíz implícita del árbol: no tiene fila propia y
su identificador de ámbito es NULL.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaxstock.database import Base


class ScopeKind(str, enum.Enum):
    """Nivel de la jerarquía que posee stock."""
    NATIONAL = "national"
    REGIONAL = "regional"
    DISTRICT = "district"
    HEALTH_CENTER = "health_center"


# Orden de arriba hacia abajo; una transferencia baja exactamente un nivel.
SCOPE_LEVELS: tuple[ScopeKind, ...] = (
    ScopeKind.NATIONAL,
    ScopeKind.REGIONAL,
    ScopeKind.DISTRICT,
    ScopeKind.HEALTH_CENTER,
)


class Region(Base):
    __tablename__ = "regions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    districts: Mapped[list["District"]] = relationship(
        "District", back_populates="region"
    )

    def __repr__(self) -> str:
        return f"<Region {self.name}>"


class District(Base):
    __tablename__ = "districts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    region_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("regions.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    region: Mapped["Region"] = relationship("Region", back_populates="districts")
    health_centers: Mapped[list["HealthCenter"]] = relationship(
        "HealthCenter", back_populates="district"
    )

    __table_args__ = (
        Index("idx_district_region", "region_id"),
    )

    def __repr__(self) -> str:
        return f"<District {self.name}>"


class HealthCenter(Base):
    __tablename__ = "health_centers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    district_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("districts.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(300))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relaciones
    district: Mapped["District"] = relationship(
        "District", back_populates="health_centers"
    )

    __table_args__ = (
        Index("idx_health_center_district", "district_id"),
    )

    def __repr__(self) -> str:
        return f"<HealthCenter {self.name}>"
