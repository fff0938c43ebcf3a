import logging

from django.db import transaction
from django.db.models import Prefetch, Q
from rest_framework.exceptions import NotFound, ValidationError

from clinic.models import PharmaOrder, PrescriptionItem
from clinic.services.audit import log_action
from clinic.services.dates import today
from clinic.services.scope import Scope

logger = logging.getLogger(__name__)

ALL = 'ALL'


def normalize_status(raw) -> str:
    status = str(raw or PharmaOrder.PENDING).strip().upper()
    if status == ALL or status in dict(PharmaOrder.STATUS_CHOICES):
        return status
    return PharmaOrder.PENDING


def _branch_orders(scope: Scope):
    items = PrescriptionItem.objects.order_by('sort_order', 'id')
    return (
        PharmaOrder.objects.select_related('visit__patient', 'visit__doctor', 'prescription')
        .prefetch_related(Prefetch('prescription__items', queryset=items))
        .filter(visit__organization_id=scope.organization_id, visit__branch_id=scope.branch_id)
    )


def list_orders(scope: Scope, *, status=None, only_today: bool = True, q: str = '') -> list[dict]:
    qs = _branch_orders(scope)
    status = normalize_status(status)
    if status != ALL:
        qs = qs.filter(status=status)
    if only_today:
        qs = qs.filter(visit__visit_date=today())
    q = (q or '').strip()
    if q:
        qs = qs.filter(Q(visit__patient__patient_code__icontains=q) | Q(visit__patient__full_name__icontains=q))
    rows = []
    for po in qs.order_by('-visit__visit_date', '-id'):
        visit = po.visit
        rows.append({
            'orderId': po.id,
            'visitId': visit.id,
            'visitDate': visit.visit_date,
            'patientCode': visit.patient.patient_code,
            'patientName': visit.patient.full_name,
            'doctorName': visit.doctor.full_name,
            'status': po.status,
            'medicines': ', '.join(it.medicine_name for it in po.prescription.items.all()) or None,
            'updatedAt': po.updated_at,
        })
    return rows


def get_order(scope: Scope, order_id: int) -> dict:
    po = _branch_orders(scope).filter(id=order_id).first()
    if po is None:
        raise NotFound('Order not found.')
    visit = po.visit
    return {
        'order': {
            'orderId': po.id,
            'status': po.status,
            'visitId': visit.id,
            'visitDate': visit.visit_date,
            'patientCode': visit.patient.patient_code,
            'patientName': visit.patient.full_name,
            'patientPhone': visit.patient.phone,
            'doctorName': visit.doctor.full_name,
            'prescriptionNotes': po.prescription.notes,
            'updatedAt': po.updated_at,
        },
        'items': [
            {
                'medicineName': it.medicine_name,
                'dosage': it.dosage,
                'morning': it.morning,
                'afternoon': it.afternoon,
                'night': it.night,
                'beforeFood': it.before_food,
                'durationDays': it.duration_days,
                'instructions': it.instructions,
            }
            for it in po.prescription.items.all()
        ],
    }


@transaction.atomic
def set_order_status(user, scope: Scope, order_id: int, status) -> PharmaOrder:
    status = str(status or '').strip().upper()
    if status not in PharmaOrder.FINAL_STATUSES:
        raise ValidationError('Invalid status. Use PURCHASED or NOT_PURCHASED.')
    po = (
        PharmaOrder.objects.select_for_update()
        .filter(id=order_id, visit__organization_id=scope.organization_id, visit__branch_id=scope.branch_id)
        .first()
    )
    if po is None:
        raise NotFound('Order not found.')
    old = po.status
    po.status = status
    po.updated_by = user
    po.save(update_fields=['status', 'updated_by', 'updated_at'])
    logger.info('pharma order=%s %s -> %s', po.id, old, status)
    log_action(user=user, action='pharma_status', object_type='pharma_order', object_id=po.id,
               detail={'from': old, 'to': status})
    return po

