"""
Secuenciador de dosis.

Renumera las citas programadas de un (niño, vacuna) en orden cronológico,
saltando los números ya usados por dosis aplicadas. Las dosis aplicadas
nunca se renumeran.
"""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.models.vaccination import CompletedVaccination, ScheduledVaccination

logger = logging.getLogger(__name__)


def assign_doses(scheduled_count: int, completed_doses: Iterable[int]) -> list[int]:
    """
    Números de dosis para `scheduled_count` citas ya ordenadas por fecha.

    >>> assign_doses(3, {1})
    [2, 3, 4]
    >>> assign_doses(3, {2, 4})
    [1, 3, 5]
    """
    taken = set(completed_doses)
    doses = []
    candidate = 1
    for _ in range(scheduled_count):
        while candidate in taken:
            candidate += 1
        doses.append(candidate)
        candidate += 1
    return doses


async def resequence(db: AsyncSession, child_id: UUID, vaccine_id: UUID) -> int:
    """
    Reasigna las dosis de las citas programadas del niño para la vacuna.
    Solo escribe las filas cuyo número cambia; devuelve cuántas fueron.
    """
    scheduled_result = await db.execute(
        select(ScheduledVaccination)
        .where(
            ScheduledVaccination.child_id == child_id,
            ScheduledVaccination.vaccine_id == vaccine_id,
        )
        .order_by(
            ScheduledVaccination.scheduled_for.asc(),
            ScheduledVaccination.created_at.asc(),
            ScheduledVaccination.id.asc(),
        )
        .execution_options(populate_existing=True)
    )
    scheduled = list(scheduled_result.unique().scalars().all())
    if not scheduled:
        return 0

    completed_result = await db.execute(
        select(CompletedVaccination.dose).where(
            CompletedVaccination.child_id == child_id,
            CompletedVaccination.vaccine_id == vaccine_id,
        )
    )
    completed = set(completed_result.scalars().all())

    changed = 0
    for row, dose in zip(scheduled, assign_doses(len(scheduled), completed)):
        if row.dose != dose:
            row.dose = dose
            changed += 1

    if changed:
        await db.flush()
        logger.info(
            f"Dosis renumeradas para niño {child_id}, vacuna {vaccine_id}: "
            f"{changed} de {len(scheduled)} citas"
        )
    return changed
