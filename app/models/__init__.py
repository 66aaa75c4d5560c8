from app.models.user import Actor, User, UserRole
from app.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
)
from app.models.reminder import REMINDER_OFFSETS, ReminderJob, ReminderKind
from app.models.notification import (
    DeliveryChannel,
    DeliveryLog,
    NotificationRecord,
    NotificationType,
)

__all__ = [
    "Actor",
    "User",
    "UserRole",
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentFilter",
    "AppointmentStatus",
    "REMINDER_OFFSETS",
    "ReminderJob",
    "ReminderKind",
    "DeliveryChannel",
    "DeliveryLog",
    "NotificationRecord",
    "NotificationType",
]
