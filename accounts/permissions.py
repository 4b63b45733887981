from rest_framework.permissions import BasePermission


class IsAdminOrEmployee(BasePermission):
    """
    Store staff only: admin/employee roles, or Django staff accounts.
    Used for managing discount definitions.
    """

    message = "Only store staff can manage discounts."

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_staff or getattr(user, "role", None) in ("admin", "employee")
