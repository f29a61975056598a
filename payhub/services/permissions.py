"""
Permission checks for attendance and payroll operations.
"""
from ..models.models import User


def _role_names(user: User) -> set:
    return {(r.name or "").lower() for r in user.roles}


def is_admin(user: User) -> bool:
    """Check if user has admin role."""
    return "admin" in _role_names(user)


def is_supervisor(user: User) -> bool:
    """Check if user has supervisor role."""
    return "supervisor" in _role_names(user)


def can_review(user: User) -> bool:
    """Attendance and payroll reviews are open to admins and supervisors."""
    return is_admin(user) or is_supervisor(user)


def can_record_for(user: User, target_user_id) -> bool:
    """
    Check if user can record attendance for target_user_id.
    - Workers record only for themselves
    - Admins and supervisors can record for anyone (e.g. kiosk or correction)
    """
    if can_review(user):
        return True
    return str(user.id) == str(target_user_id)


def can_view_attendance(user: User, target_user_id=None) -> bool:
    """Reviewers see everyone; other users only see their own events."""
    if can_review(user):
        return True
    return target_user_id is not None and str(user.id) == str(target_user_id)
