import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock
from app.core.config import settings
from app.models.appointment import ACTIVE_STATUSES, Appointment
from app.models.notification import NotificationType
from app.models.reminder import ReminderJob, ReminderKind
from app.services.notification_service import NotificationDispatcher, PushSender

logger = logging.getLogger(__name__)

_REMINDER_TITLES = {
    ReminderKind.TWENTY_FOUR_HOUR: "Appointment reminder - tomorrow",
    ReminderKind.ONE_HOUR: "Appointment in 1 hour",
}


async def cancel_reminders(session: AsyncSession, appointment_id: int) -> int:
    """Cancel every outstanding job of the appointment. Delivered jobs stay as history."""
    outstanding = (
        ReminderJob.appointment_id == appointment_id,
        ReminderJob.delivered == False,  # noqa: E712
        ReminderJob.cancelled == False,  # noqa: E712
    )
    result = await session.execute(select(ReminderJob.id).where(*outstanding))
    job_ids = list(result.scalars().all())
    if not job_ids:
        return 0
    await session.execute(
        update(ReminderJob)
        .where(ReminderJob.id.in_(job_ids), *outstanding)
        .values(cancelled=True)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("Cancelled %d reminder(s) for appointment %s", len(job_ids), appointment_id)
    return len(job_ids)


async def schedule_reminders(
    session: AsyncSession, appointment_id: int, scheduled_at: datetime, now: datetime
) -> list[ReminderJob]:
    """Replace the appointment's outstanding jobs with ones for `scheduled_at`.

    Offsets whose fire time is not strictly after `now` are skipped.
    """
    await cancel_reminders(session, appointment_id)
    jobs: list[ReminderJob] = []
    for kind in ReminderKind:
        fire_at = scheduled_at - kind.offset
        if fire_at <= now:
            logger.debug("Skipping %s reminder for appointment %s (fire_at %s already past)", kind.value, appointment_id, fire_at)
            continue
        job = ReminderJob(appointment_id=appointment_id, kind=kind, fire_at=fire_at)
        session.add(job)
        jobs.append(job)
    await session.flush()
    return jobs


async def list_reminders(
    session: AsyncSession, appointment_id: int, outstanding_only: bool = False
) -> list[ReminderJob]:
    q = select(ReminderJob).where(ReminderJob.appointment_id == appointment_id)
    if outstanding_only:
        q = q.where(ReminderJob.delivered == False, ReminderJob.cancelled == False)  # noqa: E712
    result = await session.execute(q.order_by(ReminderJob.fire_at, ReminderJob.id))
    return list(result.scalars().all())


def _claimable(now: datetime):
    stale = now - timedelta(seconds=settings.reminder_claim_timeout_seconds)
    return (
        ReminderJob.fire_at <= now,
        ReminderJob.delivered == False,  # noqa: E712
        ReminderJob.cancelled == False,  # noqa: E712
        or_(ReminderJob.claimed_at.is_(None), ReminderJob.claimed_at < stale),
    )


async def claim_due_jobs(session: AsyncSession, now: datetime, limit: int | None = None) -> list[int]:
    """Claim due jobs with a compare-and-swap per row; returns ids this caller won.

    Commits so that competing scanners see the claims.
    """
    result = await session.execute(
        select(ReminderJob.id)
        .where(*_claimable(now))
        .order_by(ReminderJob.fire_at, ReminderJob.id)
        .limit(limit or settings.reminder_batch_size)
    )
    candidates = list(result.scalars().all())
    claimed: list[int] = []
    for job_id in candidates:
        res = await session.execute(
            update(ReminderJob)
            .where(ReminderJob.id == job_id, *_claimable(now))
            .values(claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            claimed.append(job_id)
    await session.commit()
    return claimed


def _reminder_content(appointment: Appointment, kind: ReminderKind) -> str:
    when = appointment.scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
    if kind == ReminderKind.TWENTY_FOUR_HOUR:
        return f"You have an appointment tomorrow at {when}. Reason: {appointment.reason or 'consultation'}."
    return f"Your appointment is at {when}. Don't forget to attend!"


async def dispatch_reminder(session: AsyncSession, job_id: int, now: datetime) -> NotificationDispatcher | None:
    """Dispatch one claimed job and mark it delivered in the same transaction.

    Returns the dispatcher holding queued pushes, or None if nothing was sent.
    """
    job = await session.get(ReminderJob, job_id, populate_existing=True)
    if job is None or job.delivered:
        return None
    if job.cancelled:
        logger.info("Reminder %s was cancelled after claim; releasing", job_id)
        return None
    appointment = await session.get(Appointment, job.appointment_id)
    dispatcher = NotificationDispatcher(session)
    if appointment is not None and appointment.status in ACTIVE_STATUSES:
        await dispatcher.notify_once(
            f"reminder:{job.id}:{job.kind.value}",
            appointment.client_id,
            NotificationType.APPOINTMENT_REMINDER,
            _REMINDER_TITLES[job.kind],
            _reminder_content(appointment, job.kind),
            linked_appointment_id=appointment.id,
        )
    else:
        logger.warning("Reminder %s points at an inactive appointment; marking without dispatch", job_id)
    await session.execute(
        update(ReminderJob)
        .where(ReminderJob.id == job_id, ReminderJob.delivered == False)  # noqa: E712
        .values(delivered=True, delivered_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return dispatcher


async def process_due_reminders(
    session_maker: async_sessionmaker[AsyncSession],
    clock: Clock,
    push_sender: PushSender | None = None,
) -> int:
    """One scanner pass. Returns the number of jobs this pass delivered."""
    now = clock.now()
    async with session_maker() as session:
        claimed = await claim_due_jobs(session, now)
    if not claimed:
        return 0
    logger.info("Claimed %d due reminder(s)", len(claimed))
    delivered = 0
    for job_id in claimed:
        async with session_maker() as session:
            try:
                dispatcher = await dispatch_reminder(session, job_id, now)
            except Exception as e:
                # Claim expires and a later pass retries; the dedupe key prevents a resend
                await session.rollback()
                logger.exception("Reminder %s dispatch failed: %s", job_id, e)
                continue
        if dispatcher is None:
            continue
        delivered += 1
        if push_sender is not None:
            await push_sender.deliver(dispatcher.drain())
    return delivered


async def run_reminder_scanner(
    session_maker: async_sessionmaker[AsyncSession],
    clock: Clock,
    push_sender: PushSender | None = None,
    interval_seconds: int | None = None,
) -> None:
    interval = interval_seconds or settings.reminder_scan_interval_seconds
    logger.info("Reminder scanner started (every %ds)", interval)
    while True:
        try:
            await process_due_reminders(session_maker, clock, push_sender)
        except Exception as e:
            logger.exception("Reminder scan failed: %s", e)
        await asyncio.sleep(interval)
