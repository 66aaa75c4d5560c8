from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SAEnum
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class NotificationType(str, Enum):
    NEW_APPOINTMENT = "new_appointment"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_REMINDER = "appointment_reminder"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_COMPLETED = "appointment_completed"
    NEW_MESSAGE = "new_message"


class DeliveryChannel(str, Enum):
    IN_APP = "in_app"
    PUSH = "push"


class NotificationRecord(SQLModel, table=True):
    __tablename__ = "notifications"
    id: int | None = Field(default=None, primary_key=True)
    recipient_id: int = Field(foreign_key="users.id", index=True)
    type: NotificationType = Field(
        sa_column=Column(
            "type",
            SAEnum(
                NotificationType,
                name="notification_type",
                native_enum=False,
                length=32,
                values_callable=lambda e: [m.value for m in e],
            ),
            nullable=False,
        )
    )
    title: str
    content: str
    linked_appointment_id: int | None = Field(default=None, foreign_key="appointments.id")
    is_read: bool = False
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())


class DeliveryLog(SQLModel, table=True):
    """Dispatch attempts; `dedupe_key` makes keyed sends idempotent."""

    __tablename__ = "delivery_log"
    id: int | None = Field(default=None, primary_key=True)
    dedupe_key: str | None = Field(default=None, unique=True, index=True)
    channel: DeliveryChannel = Field(
        sa_column=Column(
            "channel",
            SAEnum(
                DeliveryChannel,
                name="delivery_channel",
                native_enum=False,
                length=16,
                values_callable=lambda e: [m.value for m in e],
            ),
            nullable=False,
        )
    )
    recipient_id: int = Field(index=True)
    succeeded: bool = True
    detail: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())
