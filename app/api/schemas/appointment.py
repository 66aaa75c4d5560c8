from datetime import datetime

from pydantic import BaseModel, Field

from app.models.appointment import AppointmentStatus
from app.models.notification import NotificationType


class SlotInfo(BaseModel):
    start_utc: datetime
    end_utc: datetime
    available: bool


class AvailableSlotsResponse(BaseModel):
    date: str  # YYYY-MM-DD
    practitioner_id: int
    slots: list[SlotInfo]


class RequestAppointmentBody(BaseModel):
    practitioner_id: int
    pet_id: int
    scheduled_at: datetime
    reason: str = Field(min_length=1, max_length=1000)


class ScheduleAppointmentBody(BaseModel):
    client_id: int
    pet_id: int
    scheduled_at: datetime
    reason: str = Field(min_length=1, max_length=1000)
    practitioner_id: int | None = None  # required for admins


class RecordVisitBody(BaseModel):
    client_id: int
    pet_id: int
    visited_at: datetime
    reason: str = Field(min_length=1, max_length=1000)
    practitioner_id: int | None = None


class RescheduleBody(BaseModel):
    scheduled_at: datetime


class AppointmentPublic(BaseModel):
    id: int
    pet_id: int
    client_id: int
    practitioner_id: int
    clinic_id: int
    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    reason: str
    status: AppointmentStatus
    missed: bool = False
    created_at: datetime
    updated_at: datetime


class NotificationPublic(BaseModel):
    id: int
    type: NotificationType
    title: str
    content: str
    linked_appointment_id: int | None = None
    is_read: bool
    created_at: datetime
