"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from vaxstock.models.hierarchy import District, HealthCenter, Region, ScopeKind
from vaxstock.models.vaccine import (
    AgeUnit,
    GenderRestriction,
    Vaccine,
    VaccineCalendar,
    VaccineCalendarDose,
)
from vaxstock.models.child import Child, ChildStatus, Gender
from vaxstock.models.stock import (
    LotStatus,
    StockExpirationNotice,
    StockLot,
    StockReservation,
    StockTransfer,
    StockTransferLot,
    TransferCancelReason,
    TransferStatus,
)
from vaxstock.models.vaccination import (
    BucketKind,
    ChildVaccineBucket,
    CompletedVaccination,
    RequestStatus,
    ScheduledVaccination,
    VaccineRequest,
)

__all__ = [
    "Region",
    "District",
    "HealthCenter",
    "ScopeKind",
    "Vaccine",
    "VaccineCalendar",
    "VaccineCalendarDose",
    "AgeUnit",
    "GenderRestriction",
    "Child",
    "ChildStatus",
    "Gender",
    "StockLot",
    "StockReservation",
    "StockTransfer",
    "StockTransferLot",
    "StockExpirationNotice",
    "LotStatus",
    "TransferStatus",
    "TransferCancelReason",
    "ScheduledVaccination",
    "CompletedVaccination",
    "ChildVaccineBucket",
    "VaccineRequest",
    "BucketKind",
    "RequestStatus",
]
