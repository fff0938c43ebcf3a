from dataclasses import dataclass
from typing import Optional

from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import ScopeError
from clinic.models import Doctor, Visit


@dataclass(frozen=True)
class Scope:
    """Organization/branch pair every clinical query is filtered by."""
    organization_id: int
    branch_id: int


def get_scope(user) -> Scope:
    org_id = getattr(user, 'organization_id', None)
    branch_id = getattr(user, 'branch_id', None)
    if not org_id or not branch_id:
        raise ScopeError()
    return Scope(organization_id=org_id, branch_id=branch_id)


def resolve_doctor_for_user(user, scope: Scope) -> Optional[Doctor]:
    """Return the active doctor profile linked to ``user`` in the branch."""
    return (
        Doctor.objects.filter(
            user=user,
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
            is_active=True,
        )
        .first()
    )


def acting_doctor(user, scope: Scope) -> Optional[Doctor]:
    """Doctor profile a non-admin acts as; ``None`` for admins.

    Raises a 400 when a doctor login has no linked profile.
    """
    if user.is_admin:
        return None
    doctor = resolve_doctor_for_user(user, scope)
    if doctor is None:
        raise ValidationError('Doctor account not linked to doctor profile.')
    return doctor


def get_clinician_visit(user, scope: Scope, visit_id, *, for_update: bool = False) -> Visit:
    """Load a branch visit the caller may work on as a clinician."""
    doctor = acting_doctor(user, scope)
    qs = Visit.objects.select_related('patient', 'doctor')
    if for_update:
        qs = qs.select_for_update(of=('self',))
    visit = qs.filter(
        id=visit_id,
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
    ).first()
    if visit is None:
        raise NotFound('Visit not found.')
    if doctor is not None and visit.doctor_id != doctor.id:
        raise PermissionDenied('Forbidden.')
    return visit
