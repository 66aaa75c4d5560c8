"""Public booking operations: request, schedule, confirm, reschedule, cancel, complete.

Each state-changing operation is one transaction covering the appointment row,
its reminder jobs and the in-app notifications. Push messages are queued on
``self.dispatcher`` and must be delivered by the caller after it returns.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, slot_end, to_utc
from app.core.config import settings
from app.core.errors import BookingError, DependencyUnavailable, InvalidTransition, NotAuthorized
from app.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentFilter
from app.models.notification import NotificationType
from app.models.user import Actor, UserRole
from app.services import appointment_store as store
from app.services import lifecycle
from app.services.directory_service import get_practitioner_clinic
from app.services.lifecycle import LifecycleEvent, ReminderAction, Transition
from app.services.notification_service import NotificationDispatcher
from app.services.reminder_service import cancel_reminders, schedule_reminders

logger = logging.getLogger(__name__)

READ_RETRY_DELAY_SECONDS = 0.2


def _fmt(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M UTC")


class BookingService:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self.session = session
        self.clock = clock
        self.dispatcher = NotificationDispatcher(session)

    # ---- authorization ----------------------------------------------------

    @staticmethod
    def _can_act(actor: Actor, appointment: Appointment, event: LifecycleEvent) -> bool:
        if actor.role == UserRole.ADMIN:
            return True
        if actor.role == UserRole.PRACTITIONER:
            return appointment.practitioner_id == actor.id
        # Clients manage their own bookings but cannot confirm or complete them
        return appointment.client_id == actor.id and event in (
            LifecycleEvent.RESCHEDULE,
            LifecycleEvent.CANCEL,
        )

    def _authorize(self, actor: Actor, appointment: Appointment, event: LifecycleEvent) -> None:
        if not self._can_act(actor, appointment, event):
            raise NotAuthorized(f"User {actor.id} may not {event.value} appointment {appointment.id}")

    # ---- transaction plumbing --------------------------------------------

    async def _commit(self) -> None:
        async with store.store_errors():
            await self.session.commit()

    async def _rollback(self) -> None:
        self.dispatcher.drain()
        try:
            await self.session.rollback()
        except Exception as e:
            logger.warning("Rollback failed: %s", e)

    def _detach(self, *appointments: Appointment) -> None:
        # Returned rows stay readable after a later rollback on this session
        for appointment in appointments:
            if appointment in self.session:
                self.session.expunge(appointment)

    async def _apply_reminders(self, appointment: Appointment, transition: Transition, now: datetime) -> None:
        action = transition.reminders
        if action == ReminderAction.SCHEDULE and lifecycle.reminders_wanted(appointment.status):
            await schedule_reminders(self.session, appointment.id, appointment.scheduled_at, now)
        elif action != ReminderAction.NONE:
            await cancel_reminders(self.session, appointment.id)

    async def _create(
        self,
        event: LifecycleEvent,
        actor: Actor,
        practitioner_id: int,
        client_id: int,
        pet_id: int,
        scheduled_at: datetime,
        reason: str,
    ) -> Appointment:
        transition = lifecycle.entry_transition(event)
        now = self.clock.now()
        start = to_utc(scheduled_at)
        if event == LifecycleEvent.RECORD_VISIT:
            lifecycle.ensure_visit_time(start, now)
        else:
            lifecycle.ensure_future(start, now)
        try:
            async with store.store_errors(), store.practitioner_guard(self.session, practitioner_id):
                clinic_id = await get_practitioner_clinic(self.session, practitioner_id)
                appointment = Appointment(
                    pet_id=pet_id,
                    client_id=client_id,
                    practitioner_id=practitioner_id,
                    clinic_id=clinic_id,
                    scheduled_at=start,
                    duration_minutes=settings.appointment_duration_minutes,
                    reason=reason.strip(),
                    status=transition.target,
                    created_at=now,
                    updated_at=now,
                )
                if transition.checks_slot:
                    await store.insert_appointment(self.session, appointment)
                else:
                    self.session.add(appointment)
                    await self.session.flush()
                    await self.session.refresh(appointment)
                await self._apply_reminders(appointment, transition, now)
                await self._notify_created(event, actor, appointment)
                await self._commit()
        except Exception:
            await self._rollback()
            raise
        self._detach(appointment)
        logger.info(
            "Appointment %s created by user %s (%s) for practitioner %s at %s",
            appointment.id, actor.id, event.value, practitioner_id, start,
        )
        return appointment

    async def _transition(
        self,
        event: LifecycleEvent,
        actor: Actor,
        appointment_id: int,
        new_start: datetime | None = None,
    ) -> Appointment:
        now = self.clock.now()
        try:
            async with store.store_errors():
                current = await store.get_appointment(self.session, appointment_id)
                practitioner_id = current.practitioner_id
            async with store.store_errors(), store.practitioner_guard(self.session, practitioner_id):
                # Re-read under the guard; the row may have changed meanwhile
                appointment = await store.get_appointment(self.session, appointment_id, for_update=True)
                self._authorize(actor, appointment, event)
                transition = lifecycle.transition_for(appointment, event)
                if event in (LifecycleEvent.RESCHEDULE, LifecycleEvent.CANCEL):
                    lifecycle.ensure_not_past(appointment, now)
                previous_start = appointment.scheduled_at
                if event == LifecycleEvent.RESCHEDULE:
                    lifecycle.ensure_future(new_start, now, "New appointment time")
                    await store.move_appointment(self.session, appointment, new_start, now)
                elif transition.checks_slot:
                    await store.ensure_slot_free(self.session, appointment)
                previous = lifecycle.apply(appointment, transition)
                await store.save_appointment(self.session, appointment, now)
                await self._apply_reminders(appointment, transition, now)
                await self._notify_transition(event, actor, appointment, previous_start)
                await self._commit()
        except BookingError as e:
            await self._rollback()
            if isinstance(e, InvalidTransition):
                logger.warning("Rejected %s on appointment %s: %s", event.value, appointment_id, e.detail)
            raise
        except Exception:
            await self._rollback()
            raise
        self._detach(appointment)
        logger.info(
            "Appointment %s: %s by user %s (%s -> %s)",
            appointment.id, event.value, actor.id, previous.value, appointment.status.value,
        )
        return appointment

    # ---- notifications ----------------------------------------------------

    async def _notify_created(self, event: LifecycleEvent, actor: Actor, appointment: Appointment) -> None:
        when = _fmt(appointment.scheduled_at)
        if event == LifecycleEvent.REQUEST:
            await self.dispatcher.notify(
                appointment.practitioner_id,
                NotificationType.NEW_APPOINTMENT,
                "New appointment request",
                f"Appointment requested for {when}. Reason: {appointment.reason or '-'}",
                linked_appointment_id=appointment.id,
            )
        elif event == LifecycleEvent.SCHEDULE:
            await self.dispatcher.notify(
                appointment.client_id,
                NotificationType.APPOINTMENT_SCHEDULED,
                "New appointment scheduled",
                f"An appointment has been scheduled for {when}.",
                linked_appointment_id=appointment.id,
            )
            if actor.id != appointment.practitioner_id:
                await self.dispatcher.notify(
                    appointment.practitioner_id,
                    NotificationType.NEW_APPOINTMENT,
                    "New appointment assigned",
                    f"You have been assigned a new appointment for {when}.",
                    linked_appointment_id=appointment.id,
                )

    def _other_party(self, actor: Actor, appointment: Appointment) -> list[int]:
        parties = {appointment.client_id, appointment.practitioner_id}
        parties.discard(actor.id)
        return sorted(parties)

    async def _notify_transition(
        self, event: LifecycleEvent, actor: Actor, appointment: Appointment, previous_start: datetime
    ) -> None:
        when = _fmt(appointment.scheduled_at)
        if event == LifecycleEvent.CONFIRM:
            recipients = [appointment.client_id]
            ntype, title = NotificationType.APPOINTMENT_CONFIRMED, "Appointment confirmed"
            content = f"Your appointment on {when} is confirmed."
        elif event == LifecycleEvent.RESCHEDULE:
            recipients = self._other_party(actor, appointment)
            ntype, title = NotificationType.APPOINTMENT_RESCHEDULED, "Appointment rescheduled"
            content = f"The appointment on {_fmt(previous_start)} was moved to {when}."
        elif event == LifecycleEvent.CANCEL:
            recipients = self._other_party(actor, appointment)
            ntype, title = NotificationType.APPOINTMENT_CANCELLED, "Appointment cancelled"
            who = "The client" if actor.id == appointment.client_id else "The clinic"
            content = f"{who} cancelled the appointment on {when}."
        elif event == LifecycleEvent.COMPLETE:
            recipients = [appointment.client_id]
            ntype, title = NotificationType.APPOINTMENT_COMPLETED, "Visit completed"
            content = f"The visit on {when} has been marked as completed."
        else:
            return
        for recipient_id in recipients:
            await self.dispatcher.notify(
                recipient_id, ntype, title, content, linked_appointment_id=appointment.id
            )

    # ---- public operations ------------------------------------------------

    async def request_appointment(
        self, actor: Actor, practitioner_id: int, pet_id: int, scheduled_at: datetime, reason: str
    ) -> Appointment:
        """Client asks for a slot; lands in pending and notifies the practitioner."""
        if actor.role != UserRole.CLIENT:
            raise NotAuthorized("Only clients can request appointments")
        return await self._create(
            LifecycleEvent.REQUEST, actor, practitioner_id, actor.id, pet_id, scheduled_at, reason
        )

    async def schedule_appointment(
        self,
        actor: Actor,
        client_id: int,
        pet_id: int,
        scheduled_at: datetime,
        reason: str,
        practitioner_id: int | None = None,
    ) -> Appointment:
        """Practitioner or admin books directly into scheduled; reminders are created."""
        practitioner_id = self._practitioner_for(actor, practitioner_id)
        return await self._create(
            LifecycleEvent.SCHEDULE, actor, practitioner_id, client_id, pet_id, scheduled_at, reason
        )

    async def record_visit(
        self,
        actor: Actor,
        client_id: int,
        pet_id: int,
        visited_at: datetime,
        reason: str,
        practitioner_id: int | None = None,
    ) -> Appointment:
        """Express visit: a walk-in recorded after the fact, created directly as completed."""
        practitioner_id = self._practitioner_for(actor, practitioner_id)
        return await self._create(
            LifecycleEvent.RECORD_VISIT, actor, practitioner_id, client_id, pet_id, visited_at, reason
        )

    async def confirm_appointment(self, actor: Actor, appointment_id: int) -> Appointment:
        return await self._transition(LifecycleEvent.CONFIRM, actor, appointment_id)

    async def reschedule_appointment(
        self, actor: Actor, appointment_id: int, new_start: datetime
    ) -> Appointment:
        return await self._transition(
            LifecycleEvent.RESCHEDULE, actor, appointment_id, new_start=to_utc(new_start)
        )

    async def cancel_appointment(self, actor: Actor, appointment_id: int) -> Appointment:
        return await self._transition(LifecycleEvent.CANCEL, actor, appointment_id)

    async def complete_appointment(self, actor: Actor, appointment_id: int) -> Appointment:
        return await self._transition(LifecycleEvent.COMPLETE, actor, appointment_id)

    async def get_appointment(self, actor: Actor, appointment_id: int) -> Appointment:
        async with store.store_errors():
            appointment = await store.get_appointment(self.session, appointment_id)
        if actor.role != UserRole.ADMIN and actor.id not in (
            appointment.client_id,
            appointment.practitioner_id,
        ):
            raise NotAuthorized(f"User {actor.id} may not view appointment {appointment_id}")
        self._detach(appointment)
        return appointment

    async def list_appointments(self, actor: Actor, flt: AppointmentFilter) -> list[Appointment]:
        """Calendar listing. Non-admins only ever see their own appointments."""
        if actor.role == UserRole.CLIENT:
            flt = flt.model_copy(update={"client_id": actor.id})
        elif actor.role == UserRole.PRACTITIONER:
            flt = flt.model_copy(update={"practitioner_id": actor.id})
        if flt.date_from is not None:
            flt = flt.model_copy(update={"date_from": to_utc(flt.date_from)})
        if flt.date_to is not None:
            flt = flt.model_copy(update={"date_to": to_utc(flt.date_to)})
        attempts = max(1, settings.read_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                async with store.store_errors():
                    appointments = await store.list_appointments(self.session, flt)
                self._detach(*appointments)
                return appointments
            except DependencyUnavailable:
                await self._rollback()
                if attempt == attempts:
                    raise
                logger.warning("Listing appointments failed (attempt %d/%d), retrying", attempt, attempts)
                await asyncio.sleep(READ_RETRY_DELAY_SECONDS * attempt)
        return []

    def _practitioner_for(self, actor: Actor, practitioner_id: int | None) -> int:
        if actor.role == UserRole.PRACTITIONER:
            if practitioner_id not in (None, actor.id):
                raise NotAuthorized("Practitioners can only book into their own calendar")
            return actor.id
        if actor.role == UserRole.ADMIN:
            if practitioner_id is None:
                raise NotAuthorized("Admins must name the practitioner")
            return practitioner_id
        raise NotAuthorized("Only practitioners or admins can schedule appointments directly")


def is_missed(appointment: Appointment, now: datetime) -> bool:
    """Still active although its time slot has already ended."""
    end = slot_end(appointment.scheduled_at, appointment.duration_minutes)
    return appointment.status in ACTIVE_STATUSES and end <= now
