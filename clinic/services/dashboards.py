from collections import Counter
from typing import Optional

from django.db.models import Q, Sum

from clinic.models import Payment, PaymentAllocation, QueueEntry, Service, Visit, VisitCharge
from clinic.services.dates import today
from clinic.services.money import ZERO, to_money
from clinic.services.scope import Scope, acting_doctor


def _todays_visits(scope: Scope):
    return Visit.objects.filter(
        organization_id=scope.organization_id, branch_id=scope.branch_id, visit_date=today()
    )


def consultation_kpis(scope: Scope) -> dict:
    service = Service.objects.filter(
        organization_id=scope.organization_id, code=Service.CONSULTATION, is_active=True
    ).first()
    if service is None:
        return {'accepted': ZERO, 'waived': ZERO, 'pending': ZERO}
    day = today()
    accepted = Payment.objects.filter(
        visit__organization_id=scope.organization_id,
        visit__branch_id=scope.branch_id,
        service=service,
        direction=Payment.PAYMENT,
        pay_status=Payment.ACCEPTED,
        created_at__date=day,
    ).aggregate(s=Sum('amount'))['s']
    charges = VisitCharge.objects.filter(visit__in=_todays_visits(scope), service=service)
    waived = charges.aggregate(s=Sum('discount_amount'))['s']

    paid = {
        r['visit_id']: to_money(r['total'])
        for r in PaymentAllocation.objects.filter(visit__in=_todays_visits(scope), service=service)
        .values('visit_id').annotate(total=Sum('amount'))
    }
    net_by_visit = {
        r['visit_id']: to_money(r['total'])
        for r in charges.values('visit_id').annotate(total=Sum('net_amount'))
    }
    pending = sum((max(net - paid.get(vid, ZERO), ZERO) for vid, net in net_by_visit.items()), ZERO)
    return {'accepted': to_money(accepted), 'waived': to_money(waived), 'pending': pending}


def reception_dashboard(scope: Scope) -> dict:
    visits = _todays_visits(scope)
    statuses = Counter(
        QueueEntry.objects.filter(visit__in=visits).values_list('status', flat=True)
    )
    entries = (
        QueueEntry.objects.select_related('visit__patient', 'visit__doctor', 'visit__referral')
        .filter(visit__in=visits)
        .order_by('token_no')
    )
    return {
        'kpis': {
            'registeredToday': visits.count(),
            'waiting': statuses[QueueEntry.WAITING] + statuses[QueueEntry.NEXT],
            'done': statuses[QueueEntry.COMPLETED] + statuses[QueueEntry.DONE],
            **consultation_kpis(scope),
        },
        'todaysQueue': [
            {
                'queueEntryId': e.id,
                'visitId': e.visit_id,
                'patientDbId': e.visit.patient_id,
                'token': e.token_no,
                'status': e.status,
                'patientId': e.visit.patient.patient_code,
                'name': e.visit.patient.full_name,
                'phone': e.visit.patient.phone or '',
                'referredBy': e.visit.referral.name if e.visit.referral else None,
                'doctor': e.visit.doctor.full_name,
                'createdAt': e.created_at,
            }
            for e in entries
        ],
    }


def doctor_dashboard(user, scope: Scope, *, q: str = '', doctor_id: Optional[int] = None) -> dict:
    own = acting_doctor(user, scope)
    if own is not None:
        doctor_id = own.id
    visits = _todays_visits(scope).select_related('patient', 'queue_entry')
    if doctor_id:
        visits = visits.filter(doctor_id=doctor_id)
    q = (q or '').strip()
    if q:
        visits = visits.filter(Q(patient__patient_code__icontains=q) | Q(patient__full_name__icontains=q)
                               | Q(patient__phone__icontains=q))
    rows = []
    for v in visits:
        entry = getattr(v, 'queue_entry', None)
        rows.append({
            'visitId': v.id,
            'visitDate': v.visit_date,
            'status': entry.status if entry else QueueEntry.WAITING,
            'tokenNo': entry.token_no if entry else None,
            'patientDbId': v.patient_id,
            'patientCode': v.patient.patient_code,
            'patientName': v.patient.full_name,
            'phone': v.patient.phone,
        })
    rows.sort(key=lambda r: (r['tokenNo'] is None, r['tokenNo'] or 0, r['visitId']))
    counts = Counter(r['status'] for r in rows)
    return {
        'doctorId': doctor_id or None,
        'todays': rows,
        'counts': {code: counts.get(code, 0) for code, _ in QueueEntry.STATUS_CHOICES},
    }
