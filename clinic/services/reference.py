"""
Reference data every branch needs before the desk can register anyone:
roles, payment modes, the standard services and their branch rates.

All helpers are idempotent; existing rows keep their edited values.
"""
import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction

from clinic.exceptions import Conflict
from clinic.models import Branch, Organization, PaymentMode, Role, Service, ServiceRate
from clinic.services.lookups import invalidate_lookup_caches
from clinic.services.scope import Scope

logger = logging.getLogger(__name__)

PAYMENT_MODES = [
    ('CASH', 'Cash', 1),
    ('UPI', 'UPI', 2),
    ('CARD', 'Card', 3),
]

SERVICE_NAMES = {
    Service.CONSULTATION: 'Consultation',
    Service.SCAN: 'Scan',
    Service.PAP: 'Pap Smear',
    Service.CTG: 'CTG',
    Service.LAB: 'Lab',
    Service.PHARMA: 'Pharmacy',
}

DEFAULT_RATES = {
    Service.CONSULTATION: Decimal('500.00'),
    Service.SCAN: Decimal('1200.00'),
    Service.PAP: Decimal('800.00'),
    Service.CTG: Decimal('600.00'),
    Service.LAB: Decimal('400.00'),
    Service.PHARMA: Decimal('0.00'),
}


def ensure_roles() -> int:
    created = 0
    for code, name in Role.CODE_CHOICES:
        _, was_created = Role.objects.get_or_create(code=code, defaults={'name': name})
        created += int(was_created)
    return created


def ensure_payment_modes() -> int:
    created = 0
    for code, name, order in PAYMENT_MODES:
        _, was_created = PaymentMode.objects.get_or_create(
            code=code, defaults={'display_name': name, 'sort_order': order}
        )
        created += int(was_created)
    return created


@transaction.atomic
def seed_branch(branch: Branch, rates: Optional[dict] = None) -> dict:
    """Create missing roles, modes, standard services and branch rates."""
    rates = {**DEFAULT_RATES, **(rates or {})}
    summary = {'roles': ensure_roles(), 'paymentModes': ensure_payment_modes(), 'services': 0, 'rates': 0}
    for code in Service.STANDARD_CODES:
        service, created = Service.objects.get_or_create(
            organization_id=branch.organization_id, code=code,
            defaults={'display_name': SERVICE_NAMES[code]},
        )
        summary['services'] += int(created)
        _, created = ServiceRate.objects.get_or_create(
            service=service, branch=branch, defaults={'rate': rates[code]}
        )
        summary['rates'] += int(created)
    invalidate_lookup_caches(Scope(branch.organization_id, branch.id))
    logger.info('reference data seeded branch=%s %s', branch.id, summary)
    return summary


@transaction.atomic
def ensure_branch(org_name: str, branch_name: str, branch_code: str) -> Branch:
    org, _ = Organization.objects.get_or_create(name=org_name)
    if Branch.objects.filter(code=branch_code).exclude(organization=org).exists():
        raise Conflict(f'Branch code {branch_code} is already used by another organization.')
    branch, _ = Branch.objects.get_or_create(
        organization=org, code=branch_code, defaults={'name': branch_name}
    )
    return branch
