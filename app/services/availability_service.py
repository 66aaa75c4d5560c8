from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import overlaps, slot_end
from app.core.config import settings
from app.models.appointment import ACTIVE_STATUSES, Appointment

# Upper bound on a stored appointment's length; bounds the start-time prefilter
MAX_DURATION = timedelta(hours=24)


async def find_conflicts(
    session: AsyncSession,
    practitioner_id: int,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: int | None = None,
) -> list[Appointment]:
    """Active appointments of the practitioner whose interval intersects [window_start, window_end)."""
    if window_start >= window_end:
        raise ValueError("window_start must be before window_end")
    # Coarse prefilter in SQL on start time; exact half-open test below
    q = select(Appointment).where(
        Appointment.practitioner_id == practitioner_id,
        Appointment.status.in_(list(ACTIVE_STATUSES)),
        Appointment.scheduled_at < window_end,
        Appointment.scheduled_at > window_start - MAX_DURATION,
    )
    if exclude_appointment_id is not None:
        q = q.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(q.order_by(Appointment.scheduled_at))
    return [
        a
        for a in result.scalars().all()
        if overlaps(a.scheduled_at, slot_end(a.scheduled_at, a.duration_minutes), window_start, window_end)
    ]


async def has_conflict(
    session: AsyncSession,
    practitioner_id: int,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: int | None = None,
) -> bool:
    conflicts = await find_conflicts(
        session, practitioner_id, window_start, window_end, exclude_appointment_id
    )
    return bool(conflicts)


def _slot_times_for_date(d: date) -> list[datetime]:
    """Generate slot start times as naive UTC for the given date (business hours in UTC)."""
    slots: list[datetime] = []
    start = datetime(d.year, d.month, d.day, settings.business_start_hour, 0, 0)
    end = datetime(d.year, d.month, d.day, settings.business_end_hour, 0, 0)
    delta = timedelta(minutes=settings.appointment_duration_minutes)
    current = start
    while current + delta <= end:
        slots.append(current)
        current += delta
    return slots


async def get_available_slots_for_date(
    session: AsyncSession, practitioner_id: int, d: date, now: datetime | None = None
) -> list[tuple[datetime, bool]]:
    """Returns list of (slot_start_utc, available) for one practitioner.

    Slots that already started (relative to `now`) are reported unavailable.
    """
    slots = _slot_times_for_date(d)
    if not slots:
        return []
    duration = timedelta(minutes=settings.appointment_duration_minutes)
    taken = await find_conflicts(session, practitioner_id, slots[0], slots[-1] + duration)
    out: list[tuple[datetime, bool]] = []
    for s in slots:
        busy = any(
            overlaps(a.scheduled_at, slot_end(a.scheduled_at, a.duration_minutes), s, s + duration)
            for a in taken
        )
        started = now is not None and s <= now
        out.append((s, not busy and not started))
    return out
