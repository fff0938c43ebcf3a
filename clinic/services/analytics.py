"""
Doctor-facing analytics and the doctor visit report.

A doctor login always sees its own linked profile; admins see the whole
branch or narrow it with ``doctorId``.
"""
import datetime
from typing import Optional

from django.db.models import Count, Sum
from rest_framework.exceptions import ValidationError

from clinic.models import Payment, PaymentAllocation, PrescriptionItem, Service, Visit, VisitOrder
from clinic.services.dates import parse_ymd, today
from clinic.services.money import to_money
from clinic.services.scope import Scope, acting_doctor

ANALYTICS_EPOCH = datetime.date(2024, 1, 1)
REPORT_ROW_LIMIT = 500
NO_VALUE = '—'

FEE_TYPE_LABELS = {Service.PHARMA: 'PHARMACY', Service.PAP: 'PAP_SMEAR'}


def _range_param(raw, label: str) -> Optional[datetime.date]:
    raw = (raw or '').strip()
    if not raw:
        return None
    parsed = parse_ymd(raw)
    if parsed is None:
        raise ValidationError(f'Invalid {label} date.')
    return parsed


def _doctor_visits(user, scope: Scope, doctor_id: Optional[int]):
    own = acting_doctor(user, scope)
    if own is not None:
        doctor_id = own.id
    visits = Visit.objects.filter(organization_id=scope.organization_id, branch_id=scope.branch_id)
    if doctor_id:
        visits = visits.filter(doctor_id=doctor_id)
    return visits, doctor_id or None


def doctor_analytics(user, scope: Scope, *, start=None, end=None, doctor_id: Optional[int] = None) -> dict:
    start = _range_param(start, 'start') or ANALYTICS_EPOCH
    end = _range_param(end, 'end') or today()
    if start > end:
        raise ValidationError('start must be on or before end.')
    visits, doctor_id = _doctor_visits(user, scope, doctor_id)
    visits = visits.filter(visit_date__gte=start, visit_date__lte=end)

    total_patients = visits.values('patient_id').distinct().count()
    # same name and phone seen on more than one visit
    repeat_patients = (
        visits.exclude(patient__phone__isnull=True).exclude(patient__phone='')
        .values('patient__full_name', 'patient__phone')
        .annotate(n=Count('id'))
        .filter(n__gt=1)
        .count()
    )

    ordered = dict(
        VisitOrder.objects.filter(visit__in=visits, service__code__in=(Service.SCAN, Service.CTG, Service.PAP))
        .exclude(status=VisitOrder.CANCELLED)
        .values('service__code')
        .annotate(n=Count('visit_id', distinct=True))
        .values_list('service__code', 'n')
    )

    fees = (
        PaymentAllocation.objects.filter(visit__in=visits, payment__pay_status=Payment.ACCEPTED)
        .values('service__code')
        .annotate(total=Sum('amount'))
        .order_by('service__code')
    )
    referrals = (
        visits.values('referral__name')
        .annotate(cnt=Count('id'))
        .order_by('-cnt', 'referral__name')[:5]
    )
    medicines = (
        PrescriptionItem.objects.filter(prescription__visit__in=visits)
        .values('medicine_name')
        .annotate(cnt=Count('id'))
        .order_by('-cnt', 'medicine_name')[:12]
    )

    return {
        'range': {'start': start, 'end': end},
        'doctorId': doctor_id,
        'totals': {
            'totalPatients': total_patients,
            'repeatPatients': repeat_patients,
            'scanOrdered': ordered.get(Service.SCAN, 0),
            'ctgOrdered': ordered.get(Service.CTG, 0),
            'papOrdered': ordered.get(Service.PAP, 0),
        },
        'feeBreakdown': [
            {
                'feeType': FEE_TYPE_LABELS.get(r['service__code'], r['service__code']),
                'totalAmount': to_money(r['total']),
            }
            for r in fees
        ],
        'topReferrals': [
            {'referralName': r['referral__name'] or NO_VALUE, 'cnt': r['cnt']} for r in referrals
        ],
        'medicineBreakdown': [
            {'medicineName': r['medicine_name'], 'cnt': r['cnt']} for r in medicines
        ],
    }


def _latest_order_notes(visit) -> dict:
    notes = {}
    for order in sorted(visit.orders.all(), key=lambda o: o.id):
        if order.status != VisitOrder.CANCELLED:
            notes[order.service.code] = order.notes or ''
    return notes


def _treatment(visit, note) -> str:
    text = (note.treatment or '').strip() if note else ''
    if text:
        return text
    rx = getattr(visit, 'prescription', None)
    if rx is None:
        return ''
    return ', '.join(sorted({item.medicine_name for item in rx.items.all()}))


def doctor_visit_report(user, scope: Scope, *, start=None, end=None, doctor_id: Optional[int] = None,
                        referral_id: Optional[str] = None) -> list[dict]:
    """Clinical register of visits, newest first; the date filter applies only with both bounds."""
    start = _range_param(start, 'start')
    end = _range_param(end, 'end')
    visits, _ = _doctor_visits(user, scope, doctor_id)
    if start and end:
        visits = visits.filter(visit_date__gte=start, visit_date__lte=end)
    if referral_id:
        visits = visits.filter(referral_id=referral_id)
    visits = (
        visits.select_related('patient', 'referral', 'note', 'prescription')
        .prefetch_related('orders__service', 'prescription__items')
        .order_by('-visit_date', '-id')[:REPORT_ROW_LIMIT]
    )

    rows = []
    for v in visits:
        note = getattr(v, 'note', None)
        orders = _latest_order_notes(v)
        rows.append({
            'visitId': v.id,
            'patientId': v.patient.patient_code,
            'name': v.patient.full_name,
            'referredBy': v.referral.name if v.referral else NO_VALUE,
            'visitDate': v.visit_date,
            'diagnosis': (note.diagnosis or '') if note else '',
            'investigation': (note.investigation or '') if note else '',
            'scanDetails': orders.get(Service.SCAN, ''),
            'papSmearDetails': orders.get(Service.PAP, ''),
            'ctgDetails': orders.get(Service.CTG, ''),
            'labDetails': orders.get(Service.LAB, ''),
            'treatment': _treatment(v, note),
            'remarks': (note.remarks or '') if note else '',
        })
    return rows
