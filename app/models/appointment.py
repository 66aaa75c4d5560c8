from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, Index
from sqlmodel import Field, SQLModel

from app.core.errors import DataIntegrityError


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, raw: str) -> "AppointmentStatus":
        """Map an external status string; unknown values are a data error, never a default."""
        try:
            return cls(raw.strip().lower())
        except (AttributeError, ValueError):
            raise DataIntegrityError(f"Unknown appointment status: {raw!r}") from None


ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED}
)


def _status_column() -> Column:
    return Column(
        "status",
        SAEnum(
            AppointmentStatus,
            name="appointment_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
        index=True,
    )


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_practitioner_scheduled", "practitioner_id", "scheduled_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    pet_id: int = Field(index=True)
    client_id: int = Field(foreign_key="users.id", index=True)
    practitioner_id: int = Field(foreign_key="users.id", index=True)
    clinic_id: int
    scheduled_at: datetime = Field(sa_type=DateTime())
    duration_minutes: int = 30
    reason: str = ""
    status: AppointmentStatus = Field(
        default=AppointmentStatus.PENDING, sa_column=_status_column()
    )
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())


class AppointmentFilter(SQLModel):
    practitioner_id: int | None = None
    client_id: int | None = None
    pet_id: int | None = None
    date_from: datetime | None = None  # inclusive
    date_to: datetime | None = None  # exclusive
    statuses: list[AppointmentStatus] | None = None
