from fastapi import status


class BookingError(Exception):
    """Base for errors surfaced to booking callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    retryable: bool = False

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class SlotConflict(BookingError):
    """The requested time overlaps an existing appointment for this practitioner."""

    status_code = status.HTTP_409_CONFLICT
    code = "slot_conflict"


class InvalidTransition(BookingError):
    """The requested status change is not allowed from the current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class PastAppointment(BookingError):
    """The appointment time has already passed."""

    status_code = 422
    code = "past_appointment"


class NotFound(BookingError):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AppointmentNotFound(NotFound):
    """Appointment not found."""


class PractitionerNotFound(NotFound):
    """No practitioner with this id."""

    code = "practitioner_not_found"


class NotAuthorized(BookingError):
    """Not authorized to act on this appointment."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"


class DependencyUnavailable(BookingError):
    """A backing service is temporarily unavailable; try again."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "dependency_unavailable"
    retryable = True


class DataIntegrityError(BookingError):
    """Stored data violates an expected invariant."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "data_integrity"
