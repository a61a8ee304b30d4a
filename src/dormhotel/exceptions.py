"""Error types raised by the booking service and translated at the HTTP boundary."""

from typing import Optional


class HotelError(Exception):
    """Base exception for the booking service."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(HotelError):
    """Malformed, missing or out-of-range input."""

    status_code = 400
    default_message = "Invalid request"


class DuplicateEmail(HotelError):
    status_code = 400
    default_message = "Email already exists"


class Unauthenticated(HotelError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    default_message = "Authentication required"


class InvalidToken(Unauthenticated):
    default_message = "Invalid token"


class TokenExpired(InvalidToken):
    default_message = "Token expired"


class Forbidden(HotelError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFound(HotelError):
    status_code = 404
    default_message = "Not found"


class StoreUnavailable(HotelError):
    """The database could not be reached or timed out."""

    status_code = 500
    default_message = "Database unavailable"
