"""
Doctor consultation: notes, investigation orders, prescription and the
pharmacy hand-off for one visit.
"""
import logging
from typing import Optional

from django.db import transaction
from rest_framework.exceptions import ValidationError

from clinic.models import (
    Notification, PharmaOrder, Prescription, PrescriptionItem, Role, Service, Visit, VisitDiscountNote,
    VisitNote, VisitOrder,
)
from clinic.services.audit import log_action
from clinic.services.notifications import notify_roles
from clinic.services.scope import Scope, get_clinician_visit

logger = logging.getLogger(__name__)

# request key -> service code
ORDER_KINDS = (('scan', Service.SCAN), ('pap', Service.PAP), ('ctg', Service.CTG), ('lab', Service.LAB))
DISCOUNT_NOTE_CODES = (Service.SCAN, Service.PAP, Service.CTG, Service.LAB, Service.PHARMA, Service.CONSULTATION)
ORDER_CODE_ALIASES = {'PAP_SMEAR': Service.PAP, 'PHARMACY': Service.PHARMA}


def display_order_code(code: str) -> str:
    return 'PAP_SMEAR' if code == Service.PAP else code


def _service_map(scope: Scope) -> dict:
    services = Service.objects.filter(
        organization_id=scope.organization_id, is_active=True, code__in=Service.STANDARD_CODES
    )
    return {s.code.upper(): s for s in services}


def get_consultation(user, scope: Scope, visit_id: int) -> dict:
    visit = get_clinician_visit(user, scope, visit_id)
    note = VisitNote.objects.filter(visit=visit).first()
    rx = Prescription.objects.filter(visit=visit).first()
    items = list(rx.items.all()) if rx else []
    orders = (
        VisitOrder.objects.select_related('service')
        .filter(visit=visit, service__code__in=[c for _, c in ORDER_KINDS])
        .exclude(status=VisitOrder.CANCELLED)
        .order_by('ordered_at', 'id')
    )
    discount_notes = {
        dn.service.code.upper(): dn.discount_note
        for dn in VisitDiscountNote.objects.select_related('service').filter(
            visit=visit, service__organization_id=scope.organization_id
        )
    }
    return {
        'visit': {
            'visitId': visit.id,
            'visitDate': visit.visit_date,
            'patientCode': visit.patient.patient_code,
            'patientName': visit.patient.full_name,
        },
        'note': {
            'diagnosis': note.diagnosis,
            'investigation': note.investigation,
            'treatment': note.treatment,
            'remarks': note.remarks,
        } if note else None,
        'prescription': {'prescriptionId': rx.id, 'notes': rx.notes} if rx else None,
        'prescriptionItems': [
            {
                'id': it.id,
                'medicineName': it.medicine_name,
                'dosage': it.dosage,
                'morning': it.morning,
                'afternoon': it.afternoon,
                'night': it.night,
                'beforeFood': it.before_food,
                'durationDays': it.duration_days,
                'instructions': it.instructions,
                'sortOrder': it.sort_order,
            }
            for it in items
        ],
        'orders': [
            {
                'id': o.id,
                'orderType': display_order_code(o.service.code),
                'details': o.notes or '',
                'status': o.status,
                'createdAt': o.ordered_at,
            }
            for o in orders
        ],
        'discountNotes': discount_notes,
    }


def _sync_orders(user, visit: Visit, services: dict, orders: dict) -> dict:
    needed = {}
    for key, code in ORDER_KINDS:
        requested = orders.get(key) or {}
        is_needed = bool(requested.get('needed'))
        notes = (requested.get('details') or '').strip()
        needed[code] = is_needed
        service = services.get(code)
        if service is None:
            if is_needed:
                raise ValidationError(f'Service not configured: {code}')
            continue
        existing = (
            VisitOrder.objects.filter(visit=visit, service=service)
            .exclude(status=VisitOrder.CANCELLED)
            .order_by('-id')
            .first()
        )
        if is_needed:
            if existing is None:
                VisitOrder.objects.create(visit=visit, service=service, notes=notes, ordered_by=user)
            else:
                existing.notes = notes
                existing.save(update_fields=['notes', 'updated_at'])
        elif existing is not None and existing.status == VisitOrder.ORDERED:
            existing.status = VisitOrder.CANCELLED
            existing.save(update_fields=['status', 'updated_at'])
    return needed


def _save_prescription(visit: Visit, payload: dict) -> tuple[Prescription, int]:
    rx, _ = Prescription.objects.update_or_create(visit=visit, defaults={'notes': payload.get('notes')})
    rx.items.all().delete()
    rows = []
    for it in payload.get('items') or []:
        med = (it.get('medicineName') or '').strip()
        if not med:
            continue
        rows.append(PrescriptionItem(
            prescription=rx,
            medicine_name=med[:255],
            dosage=(it.get('dosage') or '').strip() or None,
            morning=bool(it.get('morning')),
            afternoon=bool(it.get('afternoon')),
            night=bool(it.get('night')),
            before_food=bool(it.get('beforeFood')),
            duration_days=it.get('durationDays'),
            instructions=(it.get('instructions') or '').strip() or None,
            sort_order=it.get('sortOrder') or 0,
        ))
    PrescriptionItem.objects.bulk_create(rows)
    return rx, len(rows)


def _sync_pharma_order(user, scope: Scope, visit: Visit, rx: Prescription, item_count: int) -> Optional[PharmaOrder]:
    if not item_count:
        PharmaOrder.objects.filter(visit=visit, status=PharmaOrder.PENDING).delete()
        return None
    order = PharmaOrder.objects.select_for_update().filter(visit=visit).first()
    became_pending = False
    if order is None:
        order = PharmaOrder.objects.create(visit=visit, prescription=rx, status=PharmaOrder.PENDING,
                                           updated_by=user)
        became_pending = True
    else:
        order.prescription = rx
        order.updated_by = user
        if order.status not in PharmaOrder.FINAL_STATUSES:
            order.status = PharmaOrder.PENDING
        order.save(update_fields=['prescription', 'status', 'updated_by', 'updated_at'])
    if became_pending:
        notify_roles(
            scope, [Role.PHARMA_IN_CHARGE],
            title=f'New prescription for {visit.patient.full_name}',
            body=f'{visit.patient.patient_code}: {item_count} medicine(s)',
            severity=Notification.INFO,
            route=f'/pharma/orders/{order.id}',
            action_label='Open order',
        )
    return order


def _sync_discount_notes(visit: Visit, services: dict, notes: dict, needed: dict) -> None:
    for code in DISCOUNT_NOTE_CODES:
        service = services.get(code)
        if service is None:
            continue
        text = '' if not needed.get(code, True) else (notes.get(code) or '').strip()
        if not text:
            VisitDiscountNote.objects.filter(visit=visit, service=service).delete()
            continue
        VisitDiscountNote.objects.update_or_create(
            visit=visit, service=service, defaults={'discount_note': text[:500]}
        )


@transaction.atomic
def save_consultation(user, scope: Scope, visit_id: int, data: dict) -> Prescription:
    visit = get_clinician_visit(user, scope, visit_id, for_update=True)
    VisitNote.objects.update_or_create(visit=visit, defaults={
        'diagnosis': data.get('diagnosis'),
        'investigation': data.get('investigation'),
        'treatment': data.get('treatment'),
        'remarks': data.get('remarks'),
    })
    services = _service_map(scope)
    needed = _sync_orders(user, visit, services, data.get('orders') or {})
    rx, item_count = _save_prescription(visit, data.get('prescription') or {})
    _sync_pharma_order(user, scope, visit, rx, item_count)
    _sync_discount_notes(visit, services, data.get('discountNotes') or {}, needed)

    if visit.status == Visit.REGISTERED:
        visit.status = Visit.IN_PROGRESS
        visit.save(update_fields=['status', 'updated_at'])
    logger.info('consultation saved visit=%s items=%s', visit.id, item_count)
    log_action(user=user, action='consultation_save', object_type='visit', object_id=visit.id,
               detail={'prescriptionId': rx.id, 'items': item_count})
    return rx


@transaction.atomic
def create_visit_order(user, scope: Scope, visit_id: int, service_code: str = Service.SCAN,
                       notes: str = '') -> VisitOrder:
    visit = get_clinician_visit(user, scope, visit_id, for_update=True)
    code = (service_code or Service.SCAN).strip().upper()
    code = ORDER_CODE_ALIASES.get(code, code)
    service = Service.objects.filter(organization_id=scope.organization_id, code=code, is_active=True).first()
    if service is None:
        raise ValidationError(f'Service not configured: {code}')
    order = VisitOrder.objects.create(visit=visit, service=service, notes=(notes or '').strip(), ordered_by=user)
    log_action(user=user, action='order_create', object_type='visit_order', object_id=order.id,
               detail={'visitId': visit.id, 'serviceCode': code})
    return order
