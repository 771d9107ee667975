"""
Engine errors.

Every failure the engine reports carries one of four kinds. The HTTP layer maps
kinds to status codes in one place (see main.py); services never build HTTP
responses themselves.
"""

from typing import Optional

VALIDATION = "VALIDATION"
NOT_FOUND = "NOT_FOUND"
STATE_CONFLICT = "STATE_CONFLICT"
AUTHORIZATION = "AUTHORIZATION"

STATUS_CODES = {
    VALIDATION: 422,
    NOT_FOUND: 404,
    STATE_CONFLICT: 409,
    AUTHORIZATION: 403,
}


class PisteError(Exception):
    """Base class for all engine errors."""

    kind = VALIDATION
    status_code: Optional[int] = None

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    @property
    def http_status(self) -> int:
        return self.status_code or STATUS_CODES[self.kind]

    def to_dict(self):
        result = {"error": self.kind, "message": self.message}
        if self.step:
            result["step"] = self.step
        return result


class ValidationFailed(PisteError):
    """Malformed formula, malformed placement, entrant-count mismatch."""

    kind = VALIDATION


class NotFound(PisteError):
    kind = NOT_FOUND


class StateConflict(PisteError):
    """Competition or phase is in a status that forbids the operation."""

    kind = STATE_CONFLICT


class AuthorizationDenied(PisteError):
    kind = AUTHORIZATION


class AuthenticationRequired(AuthorizationDenied):
    status_code = 401
