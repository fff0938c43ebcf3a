"""
Role based permission classes.

Every clinic role lives on the user as a set of codes (see
``User.role_codes``).  Each class below grants access when the user
holds at least one of its ``allowed_roles``.
"""
from rest_framework.permissions import BasePermission

from .models import Role

ADMIN_ROLES = {Role.ADMIN, Role.SUPER_ADMIN}


class RolePermission(BasePermission):
    allowed_roles: set[str] = set()

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated):
            return False
        return user.has_any_role(*self.allowed_roles)


class IsAdminRole(RolePermission):
    """ADMIN or SUPER_ADMIN."""
    allowed_roles = ADMIN_ROLES


class IsSuperAdmin(RolePermission):
    allowed_roles = {Role.SUPER_ADMIN}


class IsFrontDesk(RolePermission):
    """Reception desk plus admins."""
    allowed_roles = {Role.RECEPTION} | ADMIN_ROLES


class IsReception(RolePermission):
    allowed_roles = {Role.RECEPTION}


class CanRegister(RolePermission):
    """Roles that may register a patient visit."""
    allowed_roles = {Role.RECEPTION, Role.DOCTOR} | ADMIN_ROLES


class IsClinician(RolePermission):
    allowed_roles = {Role.DOCTOR} | ADMIN_ROLES


class IsPharmacy(RolePermission):
    allowed_roles = {Role.PHARMA_IN_CHARGE} | ADMIN_ROLES


class IsScanDesk(RolePermission):
    allowed_roles = {Role.SCAN_IN_CHARGE} | ADMIN_ROLES


class CanViewReports(RolePermission):
    allowed_roles = {Role.RECEPTION, Role.DOCTOR} | ADMIN_ROLES


class CanManageReferrals(RolePermission):
    allowed_roles = {Role.RECEPTION, Role.DOCTOR, Role.DATA_ENTRY} | ADMIN_ROLES


class CanManageMedicines(RolePermission):
    allowed_roles = {Role.DOCTOR, Role.PHARMA_IN_CHARGE} | ADMIN_ROLES
