from rest_framework.permissions import BasePermission

from accounts.models import ClientProfile, role_for_user


class IsAdminRole(BasePermission):
    message = 'Admin only'

    def has_permission(self, request, view):
        return role_for_user(request.user) == ClientProfile.ROLE_ADMIN

