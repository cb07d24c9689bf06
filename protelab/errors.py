"""
Error taxonomy shared by the core and the API boundary.
"""

from typing import Optional


class LabError(Exception):
    """Base class for failures the caller is expected to handle."""
    code = "internal_error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(LabError):
    code = "unauthenticated"
    http_status = 401


class PermissionDenied(LabError):
    code = "permission_denied"
    http_status = 403


class NotFound(LabError):
    code = "not_found"
    http_status = 404


class ValidationError(LabError, ValueError):
    code = "validation_error"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class Conflict(LabError):
    code = "conflict"
    http_status = 409


class TransitionError(Conflict):
    """A status change that the lifecycle does not allow."""
    code = "invalid_transition"

    def __init__(self, message: str, current_status: Optional[str], target_status: Optional[str]):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status
