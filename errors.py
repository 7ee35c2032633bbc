"""Booking errors, each carrying a display-ready message and its HTTP status."""

from fastapi import status


class BookingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(BookingError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT


class InternalError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
