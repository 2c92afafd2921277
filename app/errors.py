"""Domain errors surfaced to API callers with machine-readable codes"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Error taxonomy"""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    POLICY_DENIED = "policy_denied"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.POLICY_DENIED: 400,
}


class ReservationError(Exception):
    """Base class for business errors raised by the reservation core"""
    kind: ErrorKind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class ValidationFailed(ReservationError):
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class NotFound(ReservationError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class Conflict(ReservationError):
    kind = ErrorKind.CONFLICT
    default_code = "RESERVATION_CONFLICT"


class HoldExpired(ReservationError):
    kind = ErrorKind.EXPIRED
    default_code = "RESERVATION_EXPIRED"


class PolicyDenied(ReservationError):
    kind = ErrorKind.POLICY_DENIED
    default_code = "INVALID_STATE"
