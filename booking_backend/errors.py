"""Error taxonomy shared by the availability and booking services.

Services raise ``BookingError`` subclasses carrying a stable machine-readable
``code``; the routers translate them into ``HTTPException`` responses with a
``{'error': code, 'message': ...}`` detail so the UI can branch on the code.
"""

from datetime import datetime
from typing import Any

from fastapi import HTTPException, status

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class BookingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: str, message: str | None = None, status_code: int | None = None, **extra: Any):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {'error': self.code, 'message': self.message}
        for key, value in self.extra.items():
            detail[key] = value.isoformat() if isinstance(value, datetime) else value
        return detail


class InvalidRequestError(BookingError):
    """Malformed input; rejected before any side effect."""
    status_code = status.HTTP_400_BAD_REQUEST


class BookingLockedError(BookingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        reason: str,
        plan_key: str | None = None,
        billing_status: str | None = None,
        trial_ends_at: datetime | None = None,
    ):
        super().__init__(
            'booking_locked',
            reason,
            plan_key=plan_key,
            status=billing_status,
            trial_ends_at=trial_ends_at,
        )
        self.reason = reason
        self.trial_ends_at = trial_ends_at


class SlotConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT

    MESSAGES = {
        'slot_taken': 'This time is already booked.',
        'slot_held': 'This time is currently reserved by someone else.',
    }

    def __init__(self, code: str):
        super().__init__(code, self.MESSAGES.get(code, code))


class HoldError(BookingError):
    STATUS_CODES = {
        'hold_not_found': status.HTTP_404_NOT_FOUND,
        'hold_expired': status.HTTP_410_GONE,
        'hold_already_used': status.HTTP_409_CONFLICT,
    }
    MESSAGES = {
        'hold_not_found': 'Reservation not found.',
        'hold_expired': 'Reservation expired. Please pick a time again.',
        'hold_already_used': 'Reservation was already used.',
    }

    def __init__(self, code: str):
        super().__init__(code, self.MESSAGES.get(code, code), self.STATUS_CODES.get(code, status.HTTP_409_CONFLICT))


class AppointmentError(BookingError):
    STATUS_CODES = {
        'appointment_not_found': status.HTTP_404_NOT_FOUND,
        'already_cancelled': status.HTTP_409_CONFLICT,
        'appointment_create_failed': status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    MESSAGES = {
        'appointment_not_found': 'Appointment not found.',
        'already_cancelled': 'Appointment is already cancelled.',
        'appointment_create_failed': 'Appointment could not be created.',
    }

    def __init__(self, code: str):
        super().__init__(code, self.MESSAGES.get(code, code), self.STATUS_CODES.get(code, status.HTTP_409_CONFLICT))


def as_http_exception(error: BookingError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_detail())


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )
