import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.api.deps import get_booking_service, get_current_actor, get_push_sender
from app.api.schemas.appointment import (
    AppointmentPublic,
    RecordVisitBody,
    RequestAppointmentBody,
    RescheduleBody,
    ScheduleAppointmentBody,
)
from app.core.clock import slot_end
from app.models.appointment import Appointment, AppointmentFilter, AppointmentStatus
from app.models.user import Actor
from app.services.booking_service import BookingService, is_missed
from app.services.notification_service import PushSender

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(a: Appointment, now: datetime) -> AppointmentPublic:
    return AppointmentPublic(
        id=a.id,
        pet_id=a.pet_id,
        client_id=a.client_id,
        practitioner_id=a.practitioner_id,
        clinic_id=a.clinic_id,
        scheduled_at=a.scheduled_at,
        ends_at=slot_end(a.scheduled_at, a.duration_minutes),
        duration_minutes=a.duration_minutes,
        reason=a.reason,
        status=a.status,
        missed=is_missed(a, now),
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _respond(
    appointment: Appointment,
    service: BookingService,
    background_tasks: BackgroundTasks,
    push_sender: PushSender,
) -> AppointmentPublic:
    # Push runs after the response, outside the booking transaction
    messages = service.dispatcher.drain()
    if messages:
        background_tasks.add_task(push_sender.deliver, messages)
        logger.debug("Queued %d push message(s) for delivery", len(messages))
    return _to_public(appointment, service.clock.now())


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def request_appointment(
    body: RequestAppointmentBody,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.request_appointment(
        actor, body.practitioner_id, body.pet_id, body.scheduled_at, body.reason
    )
    return _respond(appointment, service, background_tasks, push_sender)


@router.post("/schedule", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def schedule_appointment(
    body: ScheduleAppointmentBody,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.schedule_appointment(
        actor,
        client_id=body.client_id,
        pet_id=body.pet_id,
        scheduled_at=body.scheduled_at,
        reason=body.reason,
        practitioner_id=body.practitioner_id,
    )
    return _respond(appointment, service, background_tasks, push_sender)


@router.post("/visits", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def record_visit(
    body: RecordVisitBody,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.record_visit(
        actor,
        client_id=body.client_id,
        pet_id=body.pet_id,
        visited_at=body.visited_at,
        reason=body.reason,
        practitioner_id=body.practitioner_id,
    )
    return _respond(appointment, service, background_tasks, push_sender)


@router.get("", response_model=list[AppointmentPublic])
async def list_appointments(
    practitioner_id: int | None = Query(None),
    client_id: int | None = Query(None),
    pet_id: int | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    status_: list[AppointmentStatus] | None = Query(None, alias="status"),
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
) -> list[AppointmentPublic]:
    flt = AppointmentFilter(
        practitioner_id=practitioner_id,
        client_id=client_id,
        pet_id=pet_id,
        date_from=date_from,
        date_to=date_to,
        statuses=status_,
    )
    appointments = await service.list_appointments(actor, flt)
    now = service.clock.now()
    return [_to_public(a, now) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: int,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.get_appointment(actor, appointment_id)
    return _to_public(appointment, service.clock.now())


@router.post("/{appointment_id}/confirm", response_model=AppointmentPublic)
async def confirm_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.confirm_appointment(actor, appointment_id)
    return _respond(appointment, service, background_tasks, push_sender)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def reschedule_appointment(
    appointment_id: int,
    body: RescheduleBody,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.reschedule_appointment(actor, appointment_id, body.scheduled_at)
    return _respond(appointment, service, background_tasks, push_sender)


@router.post("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.cancel_appointment(actor, appointment_id)
    return _respond(appointment, service, background_tasks, push_sender)


@router.post("/{appointment_id}/complete", response_model=AppointmentPublic)
async def complete_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    push_sender: PushSender = Depends(get_push_sender),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await service.complete_appointment(actor, appointment_id)
    return _respond(appointment, service, background_tasks, push_sender)
