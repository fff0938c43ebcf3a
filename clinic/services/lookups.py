"""
Reference lists used by the front desk and doctors: payment modes,
services with branch rates, referral people, medicines and doctors.

Payment modes and service rates change rarely and are read on every
registration screen, so they are cached (``OPD_LOOKUP_CACHE_SECONDS``).
"""
import logging
from typing import Optional

import bleach
from django.conf import settings
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.db.models import Prefetch
from rest_framework.exceptions import ValidationError

from clinic.models import Doctor, Medicine, PaymentMode, ReferralPerson, Service, ServiceRate
from clinic.services.scope import Scope

logger = logging.getLogger(__name__)

LOOKUP_LIMIT = 25


def clean_name(value, max_length: int = 255) -> str:
    """Strip markup and collapse whitespace."""
    value = bleach.clean(str(value or ''), tags=[], strip=True)
    return ' '.join(value.split())[:max_length]


def payment_modes_cache_key() -> str:
    return 'lookups:payment_modes'


def services_cache_key(scope: Scope) -> str:
    return f'lookups:services:o={scope.organization_id}:b={scope.branch_id}'


def list_payment_modes() -> list[dict]:
    ck = payment_modes_cache_key()
    cached = cache.get(ck)
    if cached is not None:
        return cached
    data = [
        {'code': m.code, 'displayName': m.display_name, 'sortOrder': m.sort_order}
        for m in PaymentMode.objects.filter(is_active=True).order_by('sort_order', 'display_name')
    ]
    cache.set(ck, data, settings.OPD_LOOKUP_CACHE_SECONDS)
    return data


def list_services_with_rates(scope: Scope) -> list[dict]:
    ck = services_cache_key(scope)
    cached = cache.get(ck)
    if cached is not None:
        return cached
    rates = ServiceRate.objects.filter(branch_id=scope.branch_id, is_active=True)
    services = (
        Service.objects.filter(organization_id=scope.organization_id, is_active=True)
        .prefetch_related(Prefetch('rates', queryset=rates, to_attr='branch_rates'))
        .order_by('display_name')
    )
    data = []
    for s in services:
        if not s.branch_rates:
            continue
        data.append({
            'id': s.id,
            'code': s.code,
            'displayName': s.display_name,
            'rate': s.branch_rates[0].rate,
        })
    cache.set(ck, data, settings.OPD_LOOKUP_CACHE_SECONDS)
    return data


def invalidate_lookup_caches(scope: Optional[Scope] = None) -> None:
    cache.delete(payment_modes_cache_key())
    if scope is not None:
        cache.delete(services_cache_key(scope))


def active_payment_mode(code: str) -> Optional[PaymentMode]:
    code = (code or '').strip()
    if not code:
        return None
    return PaymentMode.objects.filter(code=code, is_active=True).first()


def get_service_by_code(scope: Scope, code: str, *, for_update: bool = False) -> Optional[Service]:
    qs = Service.objects.filter(organization_id=scope.organization_id, code=code, is_active=True)
    if for_update:
        qs = qs.select_for_update()
    return qs.first()


def branch_rate(scope: Scope, service: Service, *, for_update: bool = False) -> Optional[ServiceRate]:
    qs = ServiceRate.objects.filter(service=service, branch_id=scope.branch_id, is_active=True)
    if for_update:
        qs = qs.select_for_update()
    return qs.first()


# ---------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------
def search_referrals(q: str = '') -> list[dict]:
    qs = ReferralPerson.objects.all()
    q = (q or '').strip()
    if q:
        qs = qs.filter(name__icontains=q)
    return [{'id': r.id, 'name': r.name} for r in qs.order_by('name')[:LOOKUP_LIMIT]]


def get_or_create_referral(name: str) -> tuple[ReferralPerson, bool]:
    name = clean_name(name)
    if not name:
        raise ValidationError('Referral name is required.')
    existing = ReferralPerson.objects.filter(name__iexact=name).order_by('created_at').first()
    if existing:
        return existing, False
    ref = ReferralPerson.objects.create(name=name)
    logger.info('referral created id=%s', ref.id)
    return ref, True


# ---------------------------------------------------------------------
# Medicines
# ---------------------------------------------------------------------
def search_medicines(q: str = '') -> list[dict]:
    qs = Medicine.objects.filter(is_active=True)
    q = (q or '').strip()
    if q:
        qs = qs.filter(name__icontains=q)
    return [{'id': m.id, 'name': m.name} for m in qs.order_by('name')[:LOOKUP_LIMIT]]


def get_or_create_medicine(name: str) -> tuple[Medicine, bool]:
    name = clean_name(name)
    if not name:
        raise ValidationError('Medicine name is required.')
    existing = Medicine.objects.filter(name__iexact=name).first()
    if existing:
        if not existing.is_active:
            existing.is_active = True
            existing.save(update_fields=['is_active'])
        return existing, False
    try:
        with transaction.atomic():
            return Medicine.objects.create(name=name), True
    except IntegrityError:
        # created concurrently under a different case
        return Medicine.objects.get(name__iexact=name), False


# ---------------------------------------------------------------------
# Doctors
# ---------------------------------------------------------------------
def list_branch_doctors(scope: Scope) -> list[dict]:
    qs = Doctor.objects.filter(
        organization_id=scope.organization_id, branch_id=scope.branch_id, is_active=True
    ).order_by('full_name')
    return [
        {'id': d.id, 'fullName': d.full_name, 'phone': d.phone, 'specialization': d.specialization}
        for d in qs
    ]


def get_or_create_branch_doctor(scope: Scope, full_name: str, phone: str = '',
                                specialization: str = '') -> tuple[Doctor, bool]:
    full_name = clean_name(full_name)
    if not full_name:
        raise ValidationError('Doctor name is required.')
    existing = Doctor.objects.filter(
        organization_id=scope.organization_id, branch_id=scope.branch_id, full_name__iexact=full_name
    ).first()
    if existing:
        if not existing.is_active:
            existing.is_active = True
            existing.save(update_fields=['is_active'])
        return existing, False
    doctor = Doctor.objects.create(
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
        full_name=full_name,
        phone=(phone or '').strip() or None,
        specialization=clean_name(specialization),
    )
    logger.info('doctor created id=%s branch=%s', doctor.id, scope.branch_id)
    return doctor, True
