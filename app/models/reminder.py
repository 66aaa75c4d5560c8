from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, Index, text
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ReminderKind(str, Enum):
    TWENTY_FOUR_HOUR = "twenty_four_hour"
    ONE_HOUR = "one_hour"

    @property
    def offset(self) -> timedelta:
        return REMINDER_OFFSETS[self]


REMINDER_OFFSETS: dict[ReminderKind, timedelta] = {
    ReminderKind.TWENTY_FOUR_HOUR: timedelta(hours=24),
    ReminderKind.ONE_HOUR: timedelta(hours=1),
}


class ReminderJob(SQLModel, table=True):
    __tablename__ = "reminder_jobs"
    __table_args__ = (
        # At most one outstanding (undelivered, uncancelled) job per kind and appointment
        Index(
            "uq_reminder_jobs_live_kind",
            "appointment_id",
            "kind",
            unique=True,
            sqlite_where=text("cancelled = 0 AND delivered = 0"),
            postgresql_where=text("cancelled = false AND delivered = false"),
        ),
        Index("ix_reminder_jobs_due", "delivered", "cancelled", "fire_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", index=True)
    kind: ReminderKind = Field(
        sa_column=Column(
            "kind",
            SAEnum(
                ReminderKind,
                name="reminder_kind",
                native_enum=False,
                length=24,
                values_callable=lambda e: [m.value for m in e],
            ),
            nullable=False,
        )
    )
    fire_at: datetime = Field(sa_type=DateTime())
    delivered: bool = False
    cancelled: bool = False
    # Scanner lease; expires after the claim timeout
    claimed_at: datetime | None = Field(default=None, sa_type=DateTime())
    delivered_at: datetime | None = Field(default=None, sa_type=DateTime())
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())
