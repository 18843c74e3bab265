# accounts/permissions.py
from rest_framework.permissions import BasePermission

from common.principal import ROLE_CUSTOMER, ROLE_DRIVER


class _HasRole(BasePermission):
    role = None

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == self.role


class IsCustomer(_HasRole):
    """Allows access only to principals with role == 'customer'."""
    role = ROLE_CUSTOMER
    message = "Only customers allowed"


class IsDriver(_HasRole):
    """Allows access only to principals with role == 'driver'."""
    role = ROLE_DRIVER
    message = "Only drivers allowed"
