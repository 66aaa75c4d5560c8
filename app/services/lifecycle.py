"""Appointment status state machine.

The transition table is closed: an (event, current status) pair that is not
listed is rejected with InvalidTransition. Entry events (request, schedule,
record_visit) have no current status.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from app.core.errors import InvalidTransition, PastAppointment
from app.models.appointment import Appointment, AppointmentStatus

S = AppointmentStatus


class LifecycleEvent(str, Enum):
    REQUEST = "request"
    SCHEDULE = "schedule"
    RECORD_VISIT = "record_visit"
    CONFIRM = "confirm"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    COMPLETE = "complete"


class ReminderAction(str, Enum):
    NONE = "none"
    SCHEDULE = "schedule"  # cancel live jobs, then create jobs for the current time
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    target: AppointmentStatus | None  # None keeps the current status
    reminders: ReminderAction
    checks_slot: bool = False  # re-validate availability before applying


ENTRY_TRANSITIONS: dict[LifecycleEvent, Transition] = {
    LifecycleEvent.REQUEST: Transition(S.PENDING, ReminderAction.NONE, checks_slot=True),
    LifecycleEvent.SCHEDULE: Transition(S.SCHEDULED, ReminderAction.SCHEDULE, checks_slot=True),
    LifecycleEvent.RECORD_VISIT: Transition(S.COMPLETED, ReminderAction.NONE),
}

TRANSITIONS: dict[tuple[AppointmentStatus, LifecycleEvent], Transition] = {
    (S.PENDING, LifecycleEvent.CONFIRM): Transition(S.CONFIRMED, ReminderAction.SCHEDULE, checks_slot=True),
    (S.SCHEDULED, LifecycleEvent.CONFIRM): Transition(S.CONFIRMED, ReminderAction.SCHEDULE, checks_slot=True),
    (S.PENDING, LifecycleEvent.RESCHEDULE): Transition(None, ReminderAction.CANCEL, checks_slot=True),
    (S.SCHEDULED, LifecycleEvent.RESCHEDULE): Transition(None, ReminderAction.SCHEDULE, checks_slot=True),
    (S.CONFIRMED, LifecycleEvent.RESCHEDULE): Transition(None, ReminderAction.SCHEDULE, checks_slot=True),
    (S.PENDING, LifecycleEvent.CANCEL): Transition(S.CANCELLED, ReminderAction.CANCEL),
    (S.SCHEDULED, LifecycleEvent.CANCEL): Transition(S.CANCELLED, ReminderAction.CANCEL),
    (S.CONFIRMED, LifecycleEvent.CANCEL): Transition(S.CANCELLED, ReminderAction.CANCEL),
    (S.SCHEDULED, LifecycleEvent.COMPLETE): Transition(S.COMPLETED, ReminderAction.CANCEL),
    (S.CONFIRMED, LifecycleEvent.COMPLETE): Transition(S.COMPLETED, ReminderAction.CANCEL),
}


def entry_transition(event: LifecycleEvent) -> Transition:
    try:
        return ENTRY_TRANSITIONS[event]
    except KeyError:
        raise InvalidTransition(f"'{event.value}' cannot create an appointment") from None


def transition_for(appointment: Appointment, event: LifecycleEvent) -> Transition:
    status = AppointmentStatus.parse(appointment.status)
    transition = TRANSITIONS.get((status, event))
    if transition is None:
        raise InvalidTransition(
            f"Cannot {event.value} an appointment that is {status.value}"
        )
    return transition


def ensure_future(start: datetime, now: datetime, what: str = "Appointment time") -> None:
    if start <= now:
        raise PastAppointment(f"{what} {start.isoformat()} is not in the future")


def ensure_not_past(appointment: Appointment, now: datetime) -> None:
    """Reschedule/cancel may not rewrite an appointment whose time has already come."""
    if appointment.scheduled_at <= now:
        raise PastAppointment(
            f"Appointment {appointment.id} at {appointment.scheduled_at.isoformat()} has already started"
        )


def ensure_visit_time(start: datetime, now: datetime) -> None:
    """Recorded visits document something that already began."""
    if start > now:
        raise PastAppointment(f"Visit time {start.isoformat()} is in the future")


def apply(appointment: Appointment, transition: Transition) -> AppointmentStatus:
    """Set the target status (if any) and return the status before the change."""
    previous = AppointmentStatus.parse(appointment.status)
    if transition.target is not None:
        appointment.status = transition.target
    return previous


def reminders_wanted(status: AppointmentStatus) -> bool:
    return status in (S.SCHEDULED, S.CONFIRMED)
