"""
Operational reports.

Charge and payment totals are aggregated per (visit, service) in the
database; the row shaping, status classification and grouping happen in
Python so the same rows back every report mode.
"""
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db.models import Max, Sum
from rest_framework.exceptions import ValidationError

from clinic.models import (
    Doctor, PaymentAllocation, PaymentMode, Payment, PharmaOrder, ReferralPerson, Role, Service, Visit,
    VisitCharge,
)
from clinic.services.dates import parse_ymd, today
from clinic.services.money import ZERO, to_money
from clinic.services.scope import Scope

NO_VALUE = '—'

PENDING_TYPES = ('ALL', 'UNPAID', 'PARTIAL')
AGE_BUCKETS = ('ALL', 'TODAY', 'GT_1', 'GT_7', 'GT_30')
STATUS_FILTERS = ('ALL', 'PENDING', 'PAID', 'WAIVED')
GROUP_BY = ('NONE', 'DATE', 'REFERRAL', 'DOCTOR', 'SERVICE', 'PAYMENT_MODE', 'STATUS')


@dataclass
class ChargeLine:
    """One visit/service pair with its charged and paid totals."""
    visit: Visit
    service: Service
    gross: Decimal = ZERO
    discount: Decimal = ZERO
    net: Decimal = ZERO
    paid: Decimal = ZERO
    payment_mode: Optional[str] = None

    @property
    def pending(self) -> Decimal:
        return self.net - self.paid

    @property
    def status(self) -> str:
        if self.pending > ZERO:
            return 'PENDING'
        if self.net == ZERO:
            return 'WAIVED'
        if self.paid > ZERO:
            return 'PAID'
        return 'UNPAID'


def _open_visits(scope: Scope, start, end):
    return (
        Visit.objects.select_related('patient', 'doctor', 'referral')
        .filter(
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
            visit_date__gte=start,
            visit_date__lte=end,
        )
        .exclude(status__in=Visit.CLOSED_STATUSES)
    )


def _paid_map(visit_ids, service_ids=None) -> dict:
    qs = PaymentAllocation.objects.filter(visit_id__in=visit_ids)
    if service_ids is not None:
        qs = qs.filter(service_id__in=service_ids)
    return {
        (r['visit_id'], r['service_id']): to_money(r['total'])
        for r in qs.values('visit_id', 'service_id').annotate(total=Sum('amount'))
    }


def _last_payment_modes(visit_ids) -> dict:
    last_ids = (
        Payment.objects.filter(visit_id__in=visit_ids, direction=Payment.PAYMENT, pay_status=Payment.ACCEPTED)
        .values('visit_id')
        .annotate(max_id=Max('id'))
        .values_list('max_id', flat=True)
    )
    return dict(Payment.objects.filter(id__in=list(last_ids)).values_list('visit_id', 'payment_mode_id'))


def charge_lines(visits, *, service_ids=None) -> list[ChargeLine]:
    visits = {v.id: v for v in visits}
    if not visits:
        return []
    charges = VisitCharge.objects.filter(visit_id__in=list(visits))
    if service_ids is not None:
        charges = charges.filter(service_id__in=service_ids)
    sums = list(
        charges.values('visit_id', 'service_id')
        .annotate(gross=Sum('gross_amount'), discount=Sum('discount_amount'), net=Sum('net_amount'))
    )
    services = {s.id: s for s in Service.objects.filter(id__in={r['service_id'] for r in sums})}
    paid = _paid_map(list(visits), service_ids)
    modes = _last_payment_modes(list(visits))
    lines = []
    for r in sums:
        key = (r['visit_id'], r['service_id'])
        lines.append(ChargeLine(
            visit=visits[r['visit_id']],
            service=services[r['service_id']],
            gross=to_money(r['gross']),
            discount=to_money(r['discount']),
            net=to_money(r['net']),
            paid=paid.get(key, ZERO),
            payment_mode=modes.get(r['visit_id']),
        ))
    return lines


def _consultation_service(scope: Scope) -> Service:
    service = Service.objects.filter(
        organization_id=scope.organization_id, code=Service.CONSULTATION, is_active=True
    ).first()
    if service is None:
        raise ValidationError('CONSULTATION service not configured.')
    return service


# ---------------------------------------------------------------------
# End of day consultations
# ---------------------------------------------------------------------
def eod_consultations(scope: Scope, date=None) -> dict:
    run_date = parse_ymd(date) or today()
    service = _consultation_service(scope)
    visits = list(_open_visits(scope, run_date, run_date))
    by_visit = {line.visit.id: line for line in charge_lines(visits, service_ids=[service.id])}
    rows = []
    for v in sorted(visits, key=lambda x: (x.patient.full_name, x.id)):
        line = by_visit.get(v.id) or ChargeLine(visit=v, service=service)
        rows.append({
            'visitId': v.id,
            'visitDate': v.visit_date,
            'patientCode': v.patient.patient_code,
            'patientName': v.patient.full_name,
            'referredBy': v.referral.name if v.referral else NO_VALUE,
            'phone': v.patient.phone or NO_VALUE,
            'grossAmount': line.gross,
            'discountAmount': line.discount,
            'netAmount': line.net,
            'paidAmount': line.paid,
        })
    totals = {
        'gross': sum((r['grossAmount'] for r in rows), ZERO),
        'discount': sum((r['discountAmount'] for r in rows), ZERO),
        'net': sum((r['netAmount'] for r in rows), ZERO),
        'paid': sum((r['paidAmount'] for r in rows), ZERO),
    }
    return {'date': run_date, 'serviceCode': Service.CONSULTATION, 'rows': rows, 'totals': totals}


# ---------------------------------------------------------------------
# Pending consultations
# ---------------------------------------------------------------------
def age_bucket_label(age_days: int) -> str:
    if age_days <= 0:
        return 'TODAY'
    if age_days <= 7:
        return '1-7'
    if age_days <= 30:
        return '8-30'
    return '31+'


def _age_matches(bucket: str, age: int) -> bool:
    if bucket == 'TODAY':
        return age == 0
    if bucket == 'GT_1':
        return age > 1
    if bucket == 'GT_7':
        return age > 7
    if bucket == 'GT_30':
        return age > 30
    return True


def pending_consultations(scope: Scope, *, start, end, as_of=None, pending_type: str = 'ALL',
                          age_bucket: str = 'ALL', doctor_id: Optional[int] = None,
                          referral_id: Optional[str] = None) -> dict:
    start_d = parse_ymd(start)
    end_d = parse_ymd(end)
    as_of_d = parse_ymd(as_of or end)
    if start_d is None or end_d is None or as_of_d is None:
        raise ValidationError('start, end, asOf must be YYYY-MM-DD')
    pending_type = (pending_type or 'ALL').strip().upper()
    age_bucket = (age_bucket or 'ALL').strip().upper()
    if pending_type not in PENDING_TYPES:
        pending_type = 'ALL'
    if age_bucket not in AGE_BUCKETS:
        age_bucket = 'ALL'

    service = _consultation_service(scope)
    visits = list(_open_visits(scope, start_d, end_d))
    lines = {line.visit.id: line for line in charge_lines(visits, service_ids=[service.id])}

    # totals and buckets cover every pending visit in range; rows honour the filters
    totals = {'total_charged': ZERO, 'total_paid': ZERO, 'total_pending': ZERO, 'pending_visits': 0}
    buckets = OrderedDict((label, {'age_bucket': label, 'visits_count': 0, 'pending_amount': ZERO})
                          for label in ('TODAY', '1-7', '8-30', '31+'))
    rows = []
    for v in visits:
        line = lines.get(v.id) or ChargeLine(visit=v, service=service)
        if line.pending <= ZERO:
            continue
        age = (as_of_d - v.visit_date).days
        totals['total_charged'] += line.net
        totals['total_paid'] += line.paid
        totals['total_pending'] += line.pending
        totals['pending_visits'] += 1
        bucket = buckets[age_bucket_label(age)]
        bucket['visits_count'] += 1
        bucket['pending_amount'] += line.pending

        if doctor_id and v.doctor_id != doctor_id:
            continue
        if referral_id and v.referral_id != referral_id:
            continue
        if pending_type == 'UNPAID' and line.paid != ZERO:
            continue
        if pending_type == 'PARTIAL' and line.paid <= ZERO:
            continue
        if not _age_matches(age_bucket, age):
            continue
        rows.append({
            'visit_id': v.id,
            'visit_date': v.visit_date,
            'age_days': age,
            'patient_code': v.patient.patient_code,
            'patient_name': v.patient.full_name,
            'phone': v.patient.phone,
            'doctor_name': v.doctor.full_name,
            'referred_by': v.referral.name if v.referral else None,
            'consultation_charged': line.net,
            'consultation_paid': line.paid,
            'consultation_pending': line.pending,
        })
    rows.sort(key=lambda r: (r['visit_date'], r['patient_name']))
    return {
        'rows': rows,
        'totals': totals,
        'buckets': [b for b in buckets.values() if b['pending_amount'] > ZERO],
    }


# ---------------------------------------------------------------------
# Common report
# ---------------------------------------------------------------------
def _group_key(line: ChargeLine, group_by: str) -> str:
    if group_by == 'DATE':
        return line.visit.visit_date.isoformat()
    if group_by == 'REFERRAL':
        return line.visit.referral.name if line.visit.referral else NO_VALUE
    if group_by == 'DOCTOR':
        return line.visit.doctor.full_name
    if group_by == 'SERVICE':
        return line.service.code
    if group_by == 'PAYMENT_MODE':
        return line.payment_mode or NO_VALUE
    if group_by == 'STATUS':
        return line.status
    return ''


def _status_matches(status: str, gross_net_paid: tuple) -> bool:
    net, paid = gross_net_paid
    pending = net - paid
    if status == 'PENDING':
        return pending > ZERO
    if status == 'PAID':
        return pending <= ZERO and paid > ZERO
    if status == 'WAIVED':
        return net == ZERO
    return True


def report_options(scope: Scope, user) -> dict:
    return {
        'services': [
            {'code': s.code, 'display_name': s.display_name}
            for s in Service.objects.filter(organization_id=scope.organization_id, is_active=True)
            .order_by('display_name')
        ],
        'referrals': list(ReferralPerson.objects.order_by('name').values('id', 'name')),
        'doctors': list(
            Doctor.objects.filter(organization_id=scope.organization_id, branch_id=scope.branch_id,
                                  is_active=True).order_by('full_name').values('id', 'full_name')
        ),
        'paymentModes': [
            {'code': m.code, 'display_name': m.display_name}
            for m in PaymentMode.objects.filter(is_active=True).order_by('display_name')
        ],
        'role': sorted(user.role_codes),
    }


def _amounts(**kw) -> dict:
    keys = ('grossAmount', 'discountAmount', 'netAmount', 'paidAmount', 'pendingAmount')
    return {k: kw.get(k, ZERO) for k in keys}


def common_report(user, scope: Scope, *, start_date, end_date, referral_id=None, doctor_id=None,
                  service_code=None, payment_mode=None, status='ALL', group_by='NONE') -> dict:
    start = parse_ymd(start_date)
    end = parse_ymd(end_date)
    if start is None or end is None:
        raise ValidationError('startDate and endDate are required in YYYY-MM-DD format.')
    status = (status or 'ALL').strip().upper() or 'ALL'
    group_by = (group_by or 'NONE').strip().upper() or 'NONE'
    if status not in STATUS_FILTERS:
        raise ValidationError('Invalid status.')
    if group_by not in GROUP_BY:
        raise ValidationError('Invalid groupBy.')
    service_code = (service_code or '').strip().upper() or None
    if service_code is None and user.has_any_role(Role.RECEPTION):
        service_code = Service.CONSULTATION
    payment_mode = (payment_mode or '').strip() or None

    visits = _open_visits(scope, start, end)
    if referral_id:
        visits = visits.filter(referral_id=referral_id)
    if doctor_id:
        visits = visits.filter(doctor_id=doctor_id)
    lines = charge_lines(list(visits))
    if service_code:
        lines = [ln for ln in lines if ln.service.code == service_code]
    if payment_mode:
        lines = [ln for ln in lines if ln.payment_mode == payment_mode]

    options = report_options(scope, user)
    if group_by == 'NONE':
        lines = [ln for ln in lines if _status_matches(status, (ln.net, ln.paid))]
        lines.sort(key=lambda ln: (ln.visit.visit_date, ln.visit.patient.full_name, ln.service.display_name))
        rows = [
            {
                'visitDate': ln.visit.visit_date,
                'patientCode': ln.visit.patient.patient_code,
                'patientName': ln.visit.patient.full_name,
                'referredBy': ln.visit.referral.name if ln.visit.referral else NO_VALUE,
                'phone': ln.visit.patient.phone or NO_VALUE,
                'doctorName': ln.visit.doctor.full_name,
                'serviceCode': ln.service.code,
                'serviceName': ln.service.display_name,
                **_amounts(grossAmount=ln.gross, discountAmount=ln.discount, netAmount=ln.net,
                           paidAmount=ln.paid, pendingAmount=ln.pending),
                'paymentMode': ln.payment_mode or NO_VALUE,
            }
            for ln in lines
        ]
        totals = {
            'gross': sum((ln.gross for ln in lines), ZERO),
            'discount': sum((ln.discount for ln in lines), ZERO),
            'net': sum((ln.net for ln in lines), ZERO),
            'paid': sum((ln.paid for ln in lines), ZERO),
            'pending': sum((ln.pending for ln in lines), ZERO),
        }
        return {'mode': 'DETAIL', 'rows': rows, 'totals': totals, 'options': options}

    groups = defaultdict(lambda: {'visits': set(), 'gross': ZERO, 'discount': ZERO, 'net': ZERO, 'paid': ZERO})
    for ln in lines:
        g = groups[_group_key(ln, group_by)]
        g['visits'].add(ln.visit.id)
        g['gross'] += ln.gross
        g['discount'] += ln.discount
        g['net'] += ln.net
        g['paid'] += ln.paid
    rows = []
    for key in sorted(groups):
        g = groups[key]
        if not _status_matches(status, (g['net'], g['paid'])):
            continue
        rows.append({
            'groupKey': key or NO_VALUE,
            'visitsCount': len(g['visits']),
            **_amounts(grossAmount=g['gross'], discountAmount=g['discount'], netAmount=g['net'],
                       paidAmount=g['paid'], pendingAmount=g['net'] - g['paid']),
        })
    totals = {
        'gross': sum((r['grossAmount'] for r in rows), ZERO),
        'discount': sum((r['discountAmount'] for r in rows), ZERO),
        'net': sum((r['netAmount'] for r in rows), ZERO),
        'paid': sum((r['paidAmount'] for r in rows), ZERO),
        'pending': sum((r['pendingAmount'] for r in rows), ZERO),
        'visits': sum(r['visitsCount'] for r in rows),
    }
    return {'mode': 'GROUPED', 'groupBy': group_by, 'rows': rows, 'totals': totals, 'options': options}


# ---------------------------------------------------------------------
# Pharmacy (admin)
# ---------------------------------------------------------------------
def pharma_report(scope: Scope, *, date_from=None, date_to=None, group: str = 'day') -> dict:
    group = 'month' if (group or '').strip().lower() == 'month' else 'day'
    qs = PharmaOrder.objects.select_related('visit__doctor').filter(
        visit__organization_id=scope.organization_id, visit__branch_id=scope.branch_id
    )
    start = parse_ymd(date_from)
    end = parse_ymd(date_to)
    if start:
        qs = qs.filter(visit__visit_date__gte=start)
    if end:
        qs = qs.filter(visit__visit_date__lte=end)

    buckets = defaultdict(lambda: {'pendingCount': 0, 'purchasedCount': 0, 'notPurchasedCount': 0})
    field_for = {
        PharmaOrder.PENDING: 'pendingCount',
        PharmaOrder.PURCHASED: 'purchasedCount',
        PharmaOrder.NOT_PURCHASED: 'notPurchasedCount',
    }
    for po in qs:
        day = po.visit.visit_date
        date_key = day.strftime('%Y-%m') if group == 'month' else day.isoformat()
        buckets[(date_key, po.visit.doctor.full_name)][field_for[po.status]] += 1

    # newest period first, doctors alphabetical within a period
    keys = sorted(buckets, key=lambda k: k[1])
    keys.sort(key=lambda k: k[0], reverse=True)
    rows = [{'dateKey': k[0], 'doctorName': k[1], **buckets[k]} for k in keys]
    totals = {name: sum(r[name] for r in rows) for name in field_for.values()}
    return {'group': group, 'rows': rows, 'totals': totals}
