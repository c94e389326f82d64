"""
Modelos de Stock — Lotes, Reservas, Transferencias.

StockLot: lote de dosis de una vacuna en un ámbito de la jerarquía.
  Invariante: original = restante + retenido + distribuido, todos >= 0.
  El estado VIGENTE/VENCIDO se deriva de la fecha de vencimiento.
StockReservation: dosis retenida de un lote para una cita programada.
StockTransfer / StockTransferLot: envío de un nivel a su hijo directo,
  con las asignaciones FEFO retenidas en el emisor.
StockExpirationNotice: aviso de vencimiento ya enviado (deduplicación).
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
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaxstock.core.dates import today, utcnow
from vaxstock.database import Base
from vaxstock.models.hierarchy import ScopeKind


# ── Enums ─────────────────────────────────────────────


class LotStatus(str, enum.Enum):
    """Estado derivado de un lote (nunca se persiste)."""
    VALID = "valid"
    EXPIRED = "expired"


class TransferStatus(str, enum.Enum):
    """Estado de una transferencia de stock."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class TransferCancelReason(str, enum.Enum):
    """Quién anuló la transferencia."""
    CANCELLED_BY_SENDER = "cancelled_by_sender"
    REJECTED_BY_RECEIVER = "rejected_by_receiver"


# ── StockLot ──────────────────────────────────────────


class StockLot(Base):
    __tablename__ = "stock_lots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    scope_kind: Mapped[ScopeKind] = mapped_column(
        Enum(ScopeKind, values_callable=lambda e: [x.value for x in e]),
        nullable=False
    )
    scope_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), comment="NULL para el nivel nacional"
    )
    original_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    held_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distributed_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    expiration_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Linaje
    source_lot_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_lots.id", ondelete="SET NULL")
    )
    derived_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Orden de creación con microsegundos: desempate FEFO determinista
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Relaciones
    vaccine: Mapped["Vaccine"] = relationship("Vaccine")  # noqa: F821

    __table_args__ = (
        CheckConstraint(
            "original_quantity = remaining_quantity + held_quantity + distributed_quantity",
            name="ck_lot_quantity_balance",
        ),
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        CheckConstraint("held_quantity >= 0", name="ck_lot_held_non_negative"),
        CheckConstraint("distributed_quantity >= 0", name="ck_lot_distributed_non_negative"),
        Index("idx_lot_scope_vaccine", "vaccine_id", "scope_kind", "scope_id", "expiration_date"),
        Index("idx_lot_source", "source_lot_id"),
    )

    def status_on(self, reference: date) -> LotStatus:
        if self.expiration_date < reference:
            return LotStatus.EXPIRED
        return LotStatus.VALID

    @property
    def status(self) -> LotStatus:
        return self.status_on(today())

    def __repr__(self) -> str:
        return (
            f"<StockLot {self.id} rem={self.remaining_quantity} "
            f"held={self.held_quantity} dist={self.distributed_quantity}>"
        )


# ── StockReservation ──────────────────────────────────


class StockReservation(Base):
    __tablename__ = "stock_reservations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    scheduled_vaccination_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("scheduled_vaccinations.id"), nullable=False
    )
    lot_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_lots.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("idx_reservation_schedule", "scheduled_vaccination_id"),
        Index("idx_reservation_lot", "lot_id"),
    )

    def __repr__(self) -> str:
        return f"<StockReservation lot={self.lot_id} qty={self.quantity}>"


# ── StockTransfer ─────────────────────────────────────


class StockTransfer(Base):
    __tablename__ = "stock_transfers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    vaccine_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vaccines.id"), nullable=False
    )
    from_kind: Mapped[ScopeKind] = mapped_column(
        Enum(ScopeKind, values_callable=lambda e: [x.value for x in e]),
        nullable=False
    )
    from_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    to_kind: Mapped[ScopeKind] = mapped_column(
        Enum(ScopeKind, values_callable=lambda e: [x.value for x in e]),
        nullable=False
    )
    to_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        Enum(TransferStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=TransferStatus.PENDING
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    cancel_reason: Mapped[TransferCancelReason | None] = mapped_column(
        Enum(TransferCancelReason, values_callable=lambda e: [x.value for x in e])
    )

    # Relaciones
    vaccine: Mapped["Vaccine"] = relationship("Vaccine", lazy="joined")  # noqa: F821
    allocations: Mapped[list["StockTransferLot"]] = relationship(
        "StockTransferLot",
        back_populates="transfer",
        lazy="selectin",
        order_by="StockTransferLot.position",
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_quantity_positive"),
        Index("idx_transfer_from", "from_kind", "from_id", "status"),
        Index("idx_transfer_to", "to_kind", "to_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<StockTransfer {self.id} {self.status.value} qty={self.quantity}>"


class StockTransferLot(Base):
    __tablename__ = "stock_transfer_lots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    transfer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_transfers.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lot_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_lots.id", ondelete="SET NULL")
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    derived_lot_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_lots.id", ondelete="SET NULL"),
        comment="Lote creado en el receptor al confirmar"
    )

    # Relaciones
    transfer: Mapped["StockTransfer"] = relationship(
        "StockTransfer", back_populates="allocations"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_lot_quantity_positive"),
        Index("idx_transfer_lot_transfer", "transfer_id"),
    )

    def __repr__(self) -> str:
        return f"<StockTransferLot lot={self.lot_id} qty={self.quantity}>"


# ── StockExpirationNotice ─────────────────────────────


class StockExpirationNotice(Base):
    __tablename__ = "stock_expiration_notices"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lot_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_lots.id", ondelete="CASCADE"),
        nullable=False
    )
    threshold_days: Mapped[int] = mapped_column(Integer, nullable=False)
    notified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("lot_id", "threshold_days", name="uq_expiration_notice_lot_threshold"),
    )

    def __repr__(self) -> str:
        return f"<StockExpirationNotice lot={self.lot_id} {self.threshold_days}d>"
