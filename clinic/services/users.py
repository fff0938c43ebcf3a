"""
Staff account administration.

SUPER_ADMIN manages the whole organization; ADMIN only its own branch
and never grants admin roles.  Creating a DOCTOR login also links (or
creates) the branch's doctor profile so the login can open its own
visits.
"""
import logging
from typing import Iterable, Optional

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from rest_framework.exceptions import PermissionDenied, ValidationError

from clinic.exceptions import Conflict
from clinic.models import Branch, Doctor, Role
from clinic.permissions import ADMIN_ROLES
from clinic.services.audit import log_action

User = get_user_model()
logger = logging.getLogger(__name__)

VALID_ROLES = {code for code, _ in Role.CODE_CHOICES}


def _target_branch(actor, branch_id: Optional[int]) -> Branch:
    if not actor.organization_id:
        raise ValidationError('Your account is not linked to an organization.')
    if actor.has_any_role(Role.SUPER_ADMIN):
        if not branch_id:
            raise ValidationError('Branch is required.')
        branch = Branch.objects.filter(id=branch_id, organization_id=actor.organization_id).first()
        if branch is None:
            raise ValidationError('Invalid branch for your organization.')
        return branch
    if not actor.branch_id:
        raise ValidationError('Your account is not linked to a branch.')
    if branch_id and int(branch_id) != actor.branch_id:
        raise PermissionDenied('ADMIN can only create users in their own branch.')
    return actor.branch


def link_doctor_profile(user, branch: Branch, full_name: str, phone: str = '') -> Doctor:
    """Attach ``user`` to the branch doctor matched by phone, then by name, else create one."""
    phone = (phone or '').strip()
    base = Doctor.objects.select_for_update().filter(organization_id=branch.organization_id, branch=branch)
    doctor = base.filter(phone=phone).first() if phone else None
    if doctor is None:
        doctor = base.filter(full_name__iexact=full_name).first()
    if doctor is None:
        return Doctor.objects.create(
            organization_id=branch.organization_id, branch=branch,
            full_name=full_name, phone=phone or None, user=user,
        )
    if doctor.user_id and doctor.user_id != user.id:
        raise ValidationError('Doctor profile is already linked to another user.')
    doctor.user = user
    doctor.is_active = True
    doctor.save(update_fields=['user', 'is_active'])
    return doctor


@transaction.atomic
def create_user(actor, *, email: str, password: str, full_name: str, roles: Iterable[str],
                branch_id: Optional[int] = None, phone: str = ''):
    email = (email or '').strip().lower()
    full_name = ' '.join((full_name or '').split())
    roles = sorted({(r or '').strip().upper() for r in roles if r})
    if not email or not full_name or not roles:
        raise ValidationError('Missing required fields.')
    if not password:
        raise ValidationError('Password is required.')
    if len(password) < 8:
        raise ValidationError('Password must be at least 8 characters.')
    try:
        validate_password(password)
    except DjangoValidationError as e:
        raise ValidationError({'password': e.messages})
    unknown = set(roles) - VALID_ROLES
    if unknown:
        raise ValidationError('Invalid role.')
    if ADMIN_ROLES.intersection(roles) and not actor.has_any_role(Role.SUPER_ADMIN):
        raise PermissionDenied('Only SUPER_ADMIN can create admin users.')

    branch = _target_branch(actor, branch_id)
    if User.objects.filter(email__iexact=email).exists():
        raise Conflict('Email already exists.')
    try:
        with transaction.atomic():
            user = User.objects.create_user(
                email=email, password=password, full_name=full_name,
                organization_id=branch.organization_id, branch=branch,
            )
    except IntegrityError:
        raise Conflict('Email already exists.')
    user.set_roles(roles)

    doctor = None
    if Role.DOCTOR in roles:
        doctor = link_doctor_profile(user, branch, full_name, phone)

    logger.info('user created id=%s roles=%s branch=%s by=%s', user.id, ','.join(roles), branch.id, actor.id)
    log_action(user=actor, action='user_create', object_type='user', object_id=user.id,
               detail={'email': email, 'roles': roles, 'branchId': branch.id,
                       'doctorId': doctor.id if doctor else None})
    return user, doctor


def serialize_user(u) -> dict:
    return {
        'id': u.id,
        'email': u.email,
        'name': u.display_name,
        'roles': sorted(u.role_codes),
        'organizationId': u.organization_id,
        'branchId': u.branch_id,
        'isActive': u.is_active,
    }


def list_users(actor) -> list[dict]:
    if not actor.organization_id:
        raise ValidationError('Your account is not linked to an organization.')
    qs = User.objects.filter(organization_id=actor.organization_id).prefetch_related('roles')
    if not actor.has_any_role(Role.SUPER_ADMIN):
        qs = qs.filter(branch_id=actor.branch_id)
    out = []
    for u in qs.order_by('email'):
        u._role_codes = {r.code for r in u.roles.all()}
        out.append(serialize_user(u))
    return out
