"""
Utilidades de fecha/hora.

SQLite (tests) devuelve los DateTime sin zona horaria; todo se normaliza a UTC.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    """Fecha de referencia para clasificar lotes como vigentes o vencidos."""
    return utcnow().date()


def as_utc(value: datetime) -> datetime:
    """Adjunta UTC a un datetime naive o convierte uno con zona a UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
