"""
Patient lookups and visit read/edit helpers.

Patients are global rows; what a branch may see is limited to patients
with at least one visit in that branch.
"""
import logging
from collections import defaultdict
from typing import Optional

from django.db import transaction
from django.db.models import Case, Count, IntegerField, Max, OuterRef, Q, Subquery, Sum, Value, When
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import Doctor, Patient, Payment, PaymentAllocation, ReferralPerson, Role, Visit, VisitCharge
from clinic.services.audit import log_action
from clinic.services.lookups import get_or_create_referral
from clinic.services.money import ZERO, clamp, to_money
from clinic.services.registration import clean_phone
from clinic.services.scope import Scope, acting_doctor, resolve_doctor_for_user

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20
PATIENT_NAME_MAX = 120


def search_patients(scope: Scope, q: str) -> list[dict]:
    q = (q or '').strip()
    if not q:
        return []
    branch_visits = Visit.objects.filter(
        patient=OuterRef('pk'), organization_id=scope.organization_id, branch_id=scope.branch_id
    ).order_by('-visit_date', '-id')
    qs = (
        Patient.objects.filter(
            visits__organization_id=scope.organization_id, visits__branch_id=scope.branch_id
        )
        .filter(Q(patient_code=q) | Q(patient_code__icontains=q) | Q(full_name__icontains=q)
                | Q(phone__icontains=q))
        .annotate(
            latest_visit_id=Subquery(branch_visits.values('id')[:1]),
            latest_visit_date=Subquery(branch_visits.values('visit_date')[:1]),
            latest_referral_id=Subquery(branch_visits.values('referral_id')[:1]),
            exact=Case(When(patient_code=q, then=Value(0)), default=Value(1), output_field=IntegerField()),
        )
        .distinct()
        .order_by('exact', 'full_name', 'id')
    )
    hits = list(qs[:SEARCH_LIMIT])
    names = dict(
        ReferralPerson.objects.filter(id__in={p.latest_referral_id for p in hits if p.latest_referral_id})
        .values_list('id', 'name')
    )
    return [
        {
            'patientCode': p.patient_code,
            'name': p.full_name,
            'phone': p.phone,
            'referralpersonId': p.latest_referral_id,
            'referralpersonName': names.get(p.latest_referral_id),
            'lastVisitDate': p.latest_visit_date,
        }
        for p in hits
    ]


def _paid_by_visit_service(visit_ids) -> dict:
    rows = (
        PaymentAllocation.objects.filter(visit_id__in=list(visit_ids))
        .values('visit_id', 'service_id')
        .annotate(total=Sum('amount'))
    )
    return {(r['visit_id'], r['service_id']): to_money(r['total']) for r in rows}


def _charge_rows(charges, paid: dict) -> list[dict]:
    out = []
    for c in charges:
        net = to_money(c.net_amount)
        p = paid.get((c.visit_id, c.service_id), ZERO)
        out.append({
            'serviceCode': c.service.code,
            'serviceName': c.service.display_name,
            'gross': to_money(c.gross_amount),
            'discount': to_money(c.discount_amount),
            'net': net,
            'paid': p,
            'pending': clamp(net - p, ZERO, net),
        })
    return out


def patient_detail(scope: Scope, patient_code: str) -> dict:
    patient = Patient.objects.filter(patient_code=patient_code).first()
    if patient is None:
        raise NotFound('Patient not found.')
    visits = list(
        Visit.objects.select_related('doctor', 'referral')
        .filter(patient=patient, organization_id=scope.organization_id, branch_id=scope.branch_id)
        .order_by('-visit_date', '-id')
    )
    if not visits:
        raise NotFound('Patient not found.')
    charges = defaultdict(list)
    for c in VisitCharge.objects.select_related('service').filter(visit__in=visits).order_by('id'):
        charges[c.visit_id].append(c)
    paid = _paid_by_visit_service(v.id for v in visits)
    return {
        'patient': {
            'patientCode': patient.patient_code,
            'name': patient.full_name,
            'phone': patient.phone,
        },
        'visits': [
            {
                'visitId': v.id,
                'visitDate': v.visit_date,
                'status': v.status,
                'doctorId': v.doctor_id,
                'doctorName': v.doctor.full_name,
                'referralName': v.referral.name if v.referral else None,
                'charges': _charge_rows(charges[v.id], paid),
            }
            for v in visits
        ],
    }


def _branch_visit(scope: Scope, visit_id: int, *, for_update: bool = False) -> Visit:
    qs = Visit.objects.select_related('patient', 'doctor', 'referral')
    if for_update:
        qs = qs.select_for_update(of=('self',))
    visit = qs.filter(id=visit_id, organization_id=scope.organization_id, branch_id=scope.branch_id).first()
    if visit is None:
        raise NotFound('Visit not found.')
    return visit


def visit_header(visit: Visit) -> dict:
    return {
        'visitId': visit.id,
        'visitDate': visit.visit_date,
        'status': visit.status,
        'patientCode': visit.patient.patient_code,
        'patientName': visit.patient.full_name,
        'phone': visit.patient.phone,
        'doctorId': visit.doctor_id,
        'doctorName': visit.doctor.full_name,
        'referralId': visit.referral_id,
        'referralName': visit.referral.name if visit.referral else None,
    }


def visit_detail(scope: Scope, visit_id: int) -> dict:
    visit = _branch_visit(scope, visit_id)
    entry = getattr(visit, 'queue_entry', None)
    charges = VisitCharge.objects.select_related('service').filter(visit=visit).order_by('id')
    paid = _paid_by_visit_service([visit.id])
    payments = Payment.objects.select_related('service').filter(visit=visit).order_by('created_at', 'id')
    return {
        'visit': visit_header(visit),
        'queue': {'token': entry.token_no, 'status': entry.status} if entry else None,
        'charges': _charge_rows(charges, paid),
        'payments': [
            {
                'id': p.id,
                'serviceCode': p.service.code,
                'amount': p.amount,
                'direction': p.direction,
                'payStatus': p.pay_status,
                'paymentMode': p.payment_mode_id,
                'note': p.note,
                'createdAt': p.created_at,
            }
            for p in payments
        ],
    }


def _summary_status(net, pending) -> str:
    if net <= ZERO:
        return Payment.WAIVED
    if pending > ZERO:
        return Payment.PENDING
    return Payment.ACCEPTED


def visit_summary(user, scope: Scope, visit_id: int) -> dict:
    """Per-service payment position of one visit plus its refunds.

    A doctor login may only open its own visits; the front desk and
    admins see any visit of the branch.
    """
    visit = Visit.objects.select_related('patient', 'doctor', 'referral').filter(id=visit_id).first()
    if visit is None:
        raise NotFound('Visit not found.')
    if visit.organization_id != scope.organization_id or visit.branch_id != scope.branch_id:
        raise PermissionDenied('Forbidden.')
    if user.has_any_role(Role.DOCTOR) and not user.is_admin:
        doctor = resolve_doctor_for_user(user, scope)
        if doctor is None or doctor.id != visit.doctor_id:
            raise PermissionDenied('Forbidden.')

    accepted = Payment.objects.filter(visit=visit, pay_status=Payment.ACCEPTED)
    totals = {
        (r['service_id'], r['direction']): to_money(r['total'])
        for r in accepted.values('service_id', 'direction').annotate(total=Sum('amount'))
    }
    lines = []
    charges = VisitCharge.objects.select_related('service').filter(visit=visit).order_by('service__display_name')
    for c in charges:
        net = to_money(c.net_amount)
        paid = totals.get((c.service_id, Payment.PAYMENT), ZERO)
        refunded = totals.get((c.service_id, Payment.REFUND), ZERO)
        net_paid = max(paid - refunded, ZERO)
        pending = max(net - net_paid, ZERO)
        lines.append({
            'serviceId': c.service_id,
            'serviceCode': c.service.code,
            'serviceName': c.service.display_name,
            'grossAmount': to_money(c.gross_amount),
            'discountAmount': to_money(c.discount_amount),
            'netAmount': net,
            'paidAmount': paid,
            'refundedAmount': refunded,
            'netPaidAmount': net_paid,
            'pendingAmount': pending,
            'refundDueAmount': max(net_paid - net, ZERO),
            'payStatus': _summary_status(net, pending),
        })

    refunds = (
        accepted.filter(direction=Payment.REFUND)
        .select_related('service', 'payment_mode')
        .order_by('-created_at', '-id')
    )
    return {
        'visit': {
            'visitId': visit.id,
            'visitDate': visit.visit_date,
            'patientName': visit.patient.full_name,
            'patientCode': visit.patient.patient_code,
            'patientPhone': visit.patient.phone,
            'referredBy': visit.referral.name if visit.referral else None,
            'doctorName': visit.doctor.full_name,
        },
        'paymentLines': lines,
        'refunds': [
            {
                'paymentId': r.id,
                'serviceCode': r.service.code,
                'serviceName': r.service.display_name,
                'amount': to_money(r.amount),
                'paymentMode': r.payment_mode.code,
                'createdAt': r.created_at,
                'note': r.note,
            }
            for r in refunds
        ],
    }


def clean_patient_name(raw) -> str:
    return ' '.join(str(raw or '').split())[:PATIENT_NAME_MAX]


@transaction.atomic
def edit_visit(user, scope: Scope, visit_id: int, *, patient_name=None, phone=None, referral_name=None,
               referral_id=None, doctor_id=None) -> Visit:
    """Front desk correction of patient name/phone, referral and doctor."""
    visit = _branch_visit(scope, visit_id, for_update=True)
    patient = visit.patient
    changed = {}

    if patient_name is not None:
        name = clean_patient_name(patient_name)
        if not name:
            raise ValidationError('Patient name is required.')
        patient.full_name = name
        changed['name'] = name
    if phone is not None:
        try:
            patient.phone = clean_phone(phone)
        except ValidationError:
            raise ValidationError('Phone must be 10 digits.')
        changed['phone'] = patient.phone
    if changed:
        patient.save(update_fields=['full_name', 'phone'])

    if referral_id:
        ref = ReferralPerson.objects.filter(id=referral_id).first()
        if ref is None:
            raise ValidationError('Invalid referral.')
        visit.referral = ref
        changed['referralId'] = ref.id
    elif referral_name is not None:
        if str(referral_name).strip():
            visit.referral, _ = get_or_create_referral(referral_name)
        else:
            visit.referral = None
        changed['referralId'] = visit.referral_id

    if doctor_id:
        doctor = Doctor.objects.filter(
            id=doctor_id, is_active=True,
            organization_id=scope.organization_id, branch_id=scope.branch_id,
        ).first()
        if doctor is None:
            raise ValidationError('Invalid doctor.')
        visit.doctor = doctor
        changed['doctorId'] = doctor.id
    visit.save(update_fields=['referral', 'doctor', 'updated_at'])

    log_action(user=user, action='visit_edit', object_type='visit', object_id=visit.id,
               detail=changed)
    return visit


def doctor_patients(user, scope: Scope, *, q: str = '', page: int = 1, page_size: int = 15,
                    doctor_id: Optional[int] = None) -> dict:
    """Distinct patients seen by a doctor, most recent first."""
    own = acting_doctor(user, scope)
    if own is not None:
        doctor_id = own.id
    visits = Visit.objects.filter(organization_id=scope.organization_id, branch_id=scope.branch_id)
    if doctor_id:
        visits = visits.filter(doctor_id=doctor_id)
    q = (q or '').strip()
    if q:
        visits = visits.filter(Q(patient__patient_code__icontains=q) | Q(patient__full_name__icontains=q)
                               | Q(patient__phone__icontains=q))
    grouped = (
        visits.values('patient_id', 'patient__patient_code', 'patient__full_name', 'patient__phone')
        .annotate(last_visit=Max('visit_date'), total_visits=Count('id'))
        .order_by('-last_visit', '-patient_id')
    )
    total = visits.values('patient_id').distinct().count()
    offset = (page - 1) * page_size
    rows = [
        {
            'patientDbId': r['patient_id'],
            'patientCode': r['patient__patient_code'],
            'name': r['patient__full_name'],
            'phone': r['patient__phone'],
            'lastVisit': r['last_visit'],
            'totalVisits': r['total_visits'],
        }
        for r in grouped[offset:offset + page_size]
    ]
    return {'rows': rows, 'total': total, 'page': page, 'pageSize': page_size}
