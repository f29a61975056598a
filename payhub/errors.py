"""
Error taxonomy for the attendance and payroll core.

Only ValidationError and NotFoundError reach API callers. ConflictError is
absorbed into skipped/no-op outcomes and GeofenceWarning becomes a status flag
on the stored attendance record.
"""
from typing import Optional


class PayHubError(Exception):
    """Base class for domain errors."""

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    default_code = "error"


class ValidationError(PayHubError):
    default_code = "validation_error"


class InvalidMonth(ValidationError):
    default_code = "invalid_month"

    def __init__(self, month):
        super().__init__(f"Invalid month '{month}', expected YYYY-MM")
        self.month = month


class InvalidTransition(ValidationError):
    default_code = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class NotFoundError(PayHubError):
    default_code = "not_found"


class ConflictError(PayHubError):
    default_code = "conflict"


class GeofenceWarning(PayHubError):
    """Non-fatal: the check-in is stored but flagged for manual review."""

    default_code = "geofence_warning"
    flag = "outside_radius"


class MissingLocation(GeofenceWarning):
    default_code = "missing_location"
    flag = "missing_location"

    def __init__(self, project_id=None):
        super().__init__("Project has a geofence but no coordinates were reported")
        self.project_id = project_id
