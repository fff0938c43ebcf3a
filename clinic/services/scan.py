"""Scan desk worklist over SCAN visit orders."""
import logging

from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from clinic.models import Service, VisitOrder
from clinic.services.audit import log_action
from clinic.services.dates import parse_ymd
from clinic.services.scope import Scope

logger = logging.getLogger(__name__)

# allowed moves from each open status
TRANSITIONS = {
    VisitOrder.ORDERED: (VisitOrder.IN_PROGRESS, VisitOrder.CANCELLED),
    VisitOrder.IN_PROGRESS: (VisitOrder.COMPLETED, VisitOrder.CANCELLED),
}


def _scan_orders(scope: Scope):
    return VisitOrder.objects.select_related('visit__patient', 'visit__doctor', 'service').filter(
        service__code=Service.SCAN,
        visit__organization_id=scope.organization_id,
        visit__branch_id=scope.branch_id,
    )


def _row(o: VisitOrder) -> dict:
    return {
        'orderId': o.id,
        'visitId': o.visit_id,
        'visitDate': o.visit.visit_date,
        'patientCode': o.visit.patient.patient_code,
        'patientName': o.visit.patient.full_name,
        'doctorName': o.visit.doctor.full_name,
        'notes': o.notes or '',
        'status': o.status,
        'orderedAt': o.ordered_at,
    }


def list_scan_orders(scope: Scope, *, status=None, date=None) -> list[dict]:
    status = str(status or VisitOrder.ORDERED).strip().upper()
    if status not in dict(VisitOrder.STATUS_CHOICES):
        raise ValidationError('Invalid status.')
    qs = _scan_orders(scope).filter(status=status)
    if date:
        day = parse_ymd(date)
        if day is None:
            raise ValidationError('Invalid date. Use YYYY-MM-DD.')
        qs = qs.filter(visit__visit_date=day)
    return [_row(o) for o in qs.order_by('-ordered_at', '-id')]


def get_scan_order(scope: Scope, order_id: int) -> dict:
    order = _scan_orders(scope).filter(id=order_id).first()
    if order is None:
        raise NotFound('Order not found.')
    data = _row(order)
    data['patientPhone'] = order.visit.patient.phone
    return data


@transaction.atomic
def advance_scan_order(user, scope: Scope, order_id: int, status) -> VisitOrder:
    status = str(status or '').strip().upper()
    order = _scan_orders(scope).select_for_update(of=('self',)).filter(id=order_id).first()
    if order is None:
        raise NotFound('Order not found.')
    if status not in TRANSITIONS.get(order.status, ()):
        raise ValidationError(f'Cannot move order from {order.status} to {status or "?"}.')
    old = order.status
    order.status = status
    order.save(update_fields=['status', 'updated_at'])
    logger.info('scan order=%s %s -> %s', order.id, old, status)
    log_action(user=user, action='scan_status', object_type='visit_order', object_id=order.id,
               detail={'from': old, 'to': status})
    return order
