
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


class BookingError(Exception):
    """Base class for every error the booking core reports to its callers."""

    kind = "BookingError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(BookingError):
    kind = "NotFound"
    status_code = 404


class SlotConflict(BookingError):
    kind = "SlotConflict"
    status_code = 409


class DuplicateBooking(BookingError):
    kind = "DuplicateBooking"
    status_code = 409


class InvalidTransition(BookingError):
    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot {requested} an appointment that is {current}")
        self.current = current
        self.requested = requested


class Timeout(BookingError):
    kind = "Timeout"
    status_code = 504


class ValidationError(BookingError):
    kind = "ValidationError"
    status_code = 400


class InternalError(BookingError):
    """Infrastructure fault or bug, never a business-rule violation."""

    kind = "InternalError"
    status_code = 500


def create_error_response(error_message: str, kind: str) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message,
        "kind": kind,
    }


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.message, exc.kind),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=create_error_response(message, ValidationError.kind),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    kind = "NotFound" if exc.status_code == 404 else "HTTPError"
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), kind),
    )
