"""Appointment persistence with the availability check enforced under a per-practitioner guard.

Every write that changes an appointment's time must run inside
``practitioner_guard`` and the caller must commit before leaving it, so the
check and the write form one serialized unit for that practitioner.
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import select, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import slot_end
from app.core.errors import AppointmentNotFound, DataIntegrityError, DependencyUnavailable, SlotConflict
from app.models.appointment import Appointment, AppointmentFilter
from app.services.availability_service import has_conflict

logger = logging.getLogger(__name__)

# First key of pg_advisory_xact_lock(int, int); the second is the practitioner id
_ADVISORY_NAMESPACE = 0x7E7A


class _LocalLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


_local_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, _LocalLock]]" = (
    weakref.WeakKeyDictionary()
)


@asynccontextmanager
async def _local_lock(practitioner_id: int) -> AsyncIterator[None]:
    """Hold the per-practitioner lock; the entry is dropped once nobody holds or awaits it."""
    locks = _local_locks.setdefault(asyncio.get_running_loop(), {})
    entry = locks.get(practitioner_id)
    if entry is None:
        entry = locks[practitioner_id] = _LocalLock()
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and locks.get(practitioner_id) is entry:
            del locks[practitioner_id]


@asynccontextmanager
async def practitioner_guard(session: AsyncSession, practitioner_id: int) -> AsyncIterator[None]:
    """Serialize check+write for one practitioner.

    PostgreSQL: transaction-scoped advisory lock, released on commit/rollback.
    Other dialects: process-local lock held for the duration of the block.
    """
    if session.bind.dialect.name == "postgresql":
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:ns, :key)"),
            {"ns": _ADVISORY_NAMESPACE, "key": practitioner_id},
        )
        yield
        return
    async with _local_lock(practitioner_id):
        yield


@asynccontextmanager
async def store_errors() -> AsyncIterator[None]:
    """Map connectivity failures onto DependencyUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError, ConnectionError, TimeoutError) as e:
        logger.warning("Store unavailable: %s", e)
        raise DependencyUnavailable(f"Appointment store unavailable: {type(e).__name__}") from e
    except (KeyError, IndexError):
        raise
    except LookupError as e:
        # SQLAlchemy raises LookupError for enum values it cannot map
        raise DataIntegrityError(f"Unmapped value in appointments table: {e}") from e


async def get_appointment(
    session: AsyncSession, appointment_id: int, *, for_update: bool = False
) -> Appointment:
    q = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q.execution_options(populate_existing=True))
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise AppointmentNotFound(f"Appointment {appointment_id} not found")
    return appointment


async def ensure_slot_free(
    session: AsyncSession, appointment: Appointment, start: datetime | None = None
) -> None:
    """Raise SlotConflict if [start, start + duration) overlaps another active appointment."""
    start = start or appointment.scheduled_at
    end = slot_end(start, appointment.duration_minutes)
    if await has_conflict(
        session, appointment.practitioner_id, start, end, exclude_appointment_id=appointment.id
    ):
        raise SlotConflict()


async def insert_appointment(session: AsyncSession, appointment: Appointment) -> Appointment:
    """Insert after checking the slot; caller holds the practitioner guard."""
    await ensure_slot_free(session, appointment)
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    return appointment


async def move_appointment(
    session: AsyncSession, appointment: Appointment, new_start: datetime, now: datetime
) -> Appointment:
    """Re-check the new slot, ignoring the appointment's own one, then update its time."""
    await ensure_slot_free(session, appointment, new_start)
    appointment.scheduled_at = new_start
    appointment.updated_at = now
    session.add(appointment)
    await session.flush()
    return appointment


async def save_appointment(session: AsyncSession, appointment: Appointment, now: datetime) -> Appointment:
    appointment.updated_at = now
    session.add(appointment)
    await session.flush()
    return appointment


async def list_appointments(session: AsyncSession, flt: AppointmentFilter) -> list[Appointment]:
    q = select(Appointment).order_by(Appointment.scheduled_at, Appointment.id)
    if flt.practitioner_id is not None:
        q = q.where(Appointment.practitioner_id == flt.practitioner_id)
    if flt.client_id is not None:
        q = q.where(Appointment.client_id == flt.client_id)
    if flt.pet_id is not None:
        q = q.where(Appointment.pet_id == flt.pet_id)
    if flt.date_from is not None:
        q = q.where(Appointment.scheduled_at >= flt.date_from)
    if flt.date_to is not None:
        q = q.where(Appointment.scheduled_at < flt.date_to)
    if flt.statuses:
        q = q.where(Appointment.status.in_(flt.statuses))
    result = await session.execute(q)
    return list(result.scalars().all())
