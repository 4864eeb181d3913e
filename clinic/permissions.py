"""
Role based permission classes.

Staff roles are stored on ``User.role``; see :class:`clinic.models.User`.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS

ADMIN_ROLES = {"admin"}


def _role(request):
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return None
    return getattr(user, "role", None)


class IsAdminRole(BasePermission):
    """Allow access only to administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in ADMIN_ROLES


def HasRole(*roles: str):
    """Build a permission class admitting the given roles (admins always pass)."""
    allowed = set(roles) | ADMIN_ROLES

    class _HasRole(BasePermission):
        message = f"Requires role: {', '.join(sorted(allowed))}"

        def has_permission(self, request, view) -> bool:  # type: ignore[override]
            return _role(request) in allowed

    _HasRole.__name__ = "HasRole_" + "_".join(sorted(roles))
    return _HasRole


class AdminWriteOrReadOnly(BasePermission):
    """Any staff may read; only administrators may write (master data)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        role = _role(request)
        if role is None:
            return False
        return request.method in SAFE_METHODS or role in ADMIN_ROLES
