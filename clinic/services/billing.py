"""
Payment ledger operations for the front desk.

Every balance is derived from the ledger: ``paid`` for a visit and
service is the sum of its payment allocations (refunds are negative),
``pending`` is the charged net minus ``paid``.  Writers lock the visit
row first so two desks cannot over-collect or over-refund the same
visit.
"""
import logging
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import (
    ConsultationChargeAdjustment, Doctor, Payment, PaymentAllocation, Service, Visit, VisitCharge,
)
from clinic.services.audit import log_action
from clinic.services.lookups import active_payment_mode, get_service_by_code
from clinic.services.money import ZERO, clamp, to_money
from clinic.services.registration import record_payment
from clinic.services.scope import Scope

logger = logging.getLogger(__name__)


def charged_net(visit_id: int, service_id: int) -> Decimal:
    total = VisitCharge.objects.filter(visit_id=visit_id, service_id=service_id).aggregate(s=Sum('net_amount'))['s']
    return to_money(total)


def paid_total(visit_id: int, service_id: int, *, accepted_only: bool = False) -> Decimal:
    qs = PaymentAllocation.objects.filter(visit_id=visit_id, service_id=service_id)
    if accepted_only:
        qs = qs.filter(payment__pay_status=Payment.ACCEPTED)
    return to_money(qs.aggregate(s=Sum('amount'))['s'])


def _lock_payable_visit(scope: Scope, visit_id: int, *, action: str) -> Visit:
    visit = Visit.objects.select_for_update().filter(id=visit_id).first()
    if visit is None:
        raise ValidationError('Invalid visit.')
    if visit.organization_id != scope.organization_id or visit.branch_id != scope.branch_id:
        raise PermissionDenied('Forbidden.')
    if visit.status in Visit.CLOSED_STATUSES:
        raise ValidationError(f'Cannot {action} cancelled/no-show visit.')
    return visit


def _resolve_service(scope: Scope, code: str) -> Service:
    code = (code or Service.CONSULTATION).strip().upper()
    service = get_service_by_code(scope, code, for_update=True)
    if service is None:
        raise ValidationError(f'Service not found: {code}')
    return service


@transaction.atomic
def collect_payment(user, scope: Scope, *, visit_id: int, amount: Decimal, payment_mode: str,
                    note: Optional[str] = None, service_code: str = Service.CONSULTATION) -> dict:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError('Amount must be greater than zero.')
    visit = _lock_payable_visit(scope, visit_id, action='collect payment for')
    mode = active_payment_mode(payment_mode)
    if mode is None:
        raise ValidationError('Invalid or inactive payment mode.')
    service = _resolve_service(scope, service_code)

    pending = charged_net(visit.id, service.id) - paid_total(visit.id, service.id)
    if pending <= ZERO:
        raise ValidationError('No pending amount.')
    amount = clamp(amount, ZERO, pending)

    payment = record_payment(visit=visit, service=service, amount=amount, mode=mode, user=user, note=note)
    logger.info('payment collected visit=%s service=%s amount=%s mode=%s payment=%s',
                visit.id, service.code, amount, mode.code, payment.id)
    log_action(user=user, action='payment_collect', object_type='payment', object_id=payment.id,
               detail={'visitId': visit.id, 'serviceCode': service.code, 'amount': str(amount)})
    return {
        'visitId': visit.id,
        'serviceCode': service.code,
        'paymentId': payment.id,
        'paidAmount': amount,
        'remainingAmount': pending - amount,
    }


@transaction.atomic
def refund_payment(user, scope: Scope, *, visit_id: int, amount: Decimal, payment_mode: str,
                   note: Optional[str] = None, service_code: str = Service.CONSULTATION) -> dict:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError('Refund amount must be greater than zero.')
    visit = _lock_payable_visit(scope, visit_id, action='refund')
    mode = active_payment_mode((payment_mode or '').strip().upper())
    if mode is None:
        raise ValidationError('Invalid or inactive payment mode.')
    service = _resolve_service(scope, service_code)

    paid = paid_total(visit.id, service.id)
    if paid <= ZERO:
        raise ValidationError('No paid amount available to refund.')
    amount = clamp(amount, ZERO, paid)

    payment = record_payment(visit=visit, service=service, amount=amount, mode=mode, user=user,
                             note=note, direction=Payment.REFUND)
    logger.info('refund issued visit=%s service=%s amount=%s payment=%s',
                visit.id, service.code, amount, payment.id)
    log_action(user=user, action='payment_refund', object_type='payment', object_id=payment.id,
               detail={'visitId': visit.id, 'serviceCode': service.code, 'amount': str(amount)})
    return {
        'visitId': visit.id,
        'serviceCode': service.code,
        'paymentId': payment.id,
        'refundedAmount': amount,
        'remainingPaidBalance': paid - amount,
    }


def _branch_visit(scope: Scope, visit_id: int, *, for_update: bool = False) -> Visit:
    qs = Visit.objects.select_related('patient', 'referral', 'doctor')
    if for_update:
        qs = qs.select_for_update(of=('self',))
    visit = qs.filter(id=visit_id, organization_id=scope.organization_id, branch_id=scope.branch_id).first()
    if visit is None:
        raise NotFound('Visit not found.')
    return visit


def _consultation_service(scope: Scope, *, for_update: bool = False) -> Service:
    service = get_service_by_code(scope, Service.CONSULTATION, for_update=for_update)
    if service is None:
        raise ValidationError('Consultation service not configured.')
    return service


def _payment_row(p: Payment) -> dict:
    return {
        'id': p.id,
        'amount': p.amount,
        'direction': p.direction,
        'payStatus': p.pay_status,
        'paymentMode': p.payment_mode_id,
        'note': p.note,
        'createdAt': p.created_at,
    }


def get_consultation_charge(scope: Scope, visit_id: int) -> dict:
    service = _consultation_service(scope)
    visit = _branch_visit(scope, visit_id)
    charge = VisitCharge.objects.filter(visit=visit, service=service).order_by('id').first()
    if charge is None:
        raise NotFound('Consultation charge row not found for this visit.')
    paid = paid_total(visit.id, service.id)
    net = to_money(charge.net_amount)
    payments = Payment.objects.filter(visit=visit, service=service).order_by('created_at', 'id')
    adjustments = visit.charge_adjustments.filter(service=service).select_related('authorized_by').order_by('-id')
    return {
        'visit': {
            'patientName': visit.patient.full_name,
            'patientPhone': visit.patient.phone,
            'referredById': visit.referral_id,
            'referredBy': visit.referral.name if visit.referral else None,
        },
        'charge': {
            'visitId': visit.id,
            'serviceId': service.id,
            'serviceCode': service.code,
            'serviceName': service.display_name,
            'grossAmount': to_money(charge.gross_amount),
            'discountAmount': to_money(charge.discount_amount),
            'netAmount': net,
            'paidAmount': paid,
            'pendingAmount': clamp(net - paid, ZERO, net),
        },
        'payments': [_payment_row(p) for p in payments],
        'adjustments': [
            {
                'id': a.id,
                'oldNet': a.old_net_amount,
                'newNet': a.new_net_amount,
                'refundAmount': a.refund_amount,
                'refundPaymentId': a.refund_payment_id,
                'reason': a.reason,
                'authorizedBy': a.authorized_by.full_name if a.authorized_by else None,
                'createdAt': a.created_at,
            }
            for a in adjustments
        ],
    }


def _refund_mode_for(visit: Visit, service: Service, requested: str):
    code = (requested or '').strip().upper()
    if not code:
        last = (
            Payment.objects.filter(visit=visit, service=service, direction=Payment.PAYMENT,
                                   pay_status=Payment.ACCEPTED)
            .order_by('-id')
            .values_list('payment_mode_id', flat=True)
            .first()
        )
        code = last or settings.OPD_DEFAULT_REFUND_MODE
    mode = active_payment_mode(code)
    if mode is None:
        raise ValidationError('Invalid or inactive payment mode.')
    return mode


@transaction.atomic
def adjust_consultation_charge(user, scope: Scope, visit_id: int, *, net_amount: Decimal, reason: str,
                               authorized_by_doctor_id: Optional[int] = None,
                               refund_mode_code: str = '') -> dict:
    """Re-price the consultation; refund the excess when the patient already paid more."""
    net_amount = to_money(net_amount)
    if net_amount < ZERO:
        raise ValidationError('Invalid netAmount.')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('Reason is required.')

    service = _consultation_service(scope, for_update=True)
    visit = _branch_visit(scope, visit_id, for_update=True)
    charge = (
        VisitCharge.objects.select_for_update()
        .filter(visit=visit, service=service)
        .order_by('id')
        .first()
    )
    if charge is None:
        raise ValidationError('No visit_charges row found for this visit.')

    authorized_by = None
    if authorized_by_doctor_id:
        authorized_by = Doctor.objects.filter(
            id=authorized_by_doctor_id,
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
        ).first()
        if authorized_by is None:
            raise ValidationError('Invalid doctor.')

    old_gross = to_money(charge.gross_amount)
    old_discount = to_money(charge.discount_amount)
    old_net = to_money(charge.net_amount)
    new_net = clamp(net_amount, ZERO, old_gross)
    new_discount = clamp(old_gross - new_net, ZERO, old_gross)
    paid = paid_total(visit.id, service.id, accepted_only=True)

    charge.discount_amount = new_discount
    charge.net_amount = new_net
    charge.save(update_fields=['discount_amount', 'net_amount', 'updated_at'])

    refund = None
    refund_amount = paid - new_net if paid > new_net else ZERO
    if refund_amount > ZERO:
        mode = _refund_mode_for(visit, service, refund_mode_code)
        refund = record_payment(visit=visit, service=service, amount=refund_amount, mode=mode, user=user,
                                note=f'Refund due to fee adjustment: {reason}'[:500],
                                direction=Payment.REFUND)

    adjustment = ConsultationChargeAdjustment.objects.create(
        visit=visit,
        service=service,
        old_gross_amount=old_gross,
        old_discount_amount=old_discount,
        old_net_amount=old_net,
        new_discount_amount=new_discount,
        new_net_amount=new_net,
        refund_amount=refund_amount,
        refund_payment=refund,
        reason=reason[:500],
        authorized_by=authorized_by,
        created_by=user,
    )
    logger.info('consultation charge adjusted visit=%s net %s -> %s refund=%s',
                visit.id, old_net, new_net, refund_amount)
    log_action(user=user, action='charge_adjust', object_type='visit', object_id=visit.id,
               detail={'adjustmentId': adjustment.id, 'oldNet': str(old_net), 'newNet': str(new_net),
                       'refund': str(refund_amount)})
    return {
        'old': {'gross': old_gross, 'discount': old_discount, 'net': old_net, 'paid': paid},
        'updated': {'discount': new_discount, 'net': new_net},
        'refund': {'amount': refund_amount, 'paymentId': refund.id} if refund else None,
    }


def payment_voucher(scope: Scope, payment_id: int) -> dict:
    """Everything a receipt or refund voucher prints for one ledger row."""
    payment = (
        Payment.objects.select_related('visit__patient', 'visit__doctor', 'visit__branch', 'service',
                                       'payment_mode', 'created_by')
        .filter(id=payment_id)
        .first()
    )
    if payment is None:
        raise NotFound('Payment not found.')
    visit = payment.visit
    if visit.organization_id != scope.organization_id or visit.branch_id != scope.branch_id:
        raise PermissionDenied('Forbidden.')
    return {
        'paymentId': payment.id,
        'direction': payment.direction,
        'payStatus': payment.pay_status,
        'amount': payment.amount,
        'note': payment.note,
        'createdAt': payment.created_at,
        'createdBy': payment.created_by.display_name if payment.created_by else None,
        'paymentMode': {'code': payment.payment_mode.code, 'displayName': payment.payment_mode.display_name},
        'service': {'code': payment.service.code, 'displayName': payment.service.display_name},
        'visit': {
            'id': visit.id,
            'visitDate': visit.visit_date,
            'doctorName': visit.doctor.full_name,
            'branchName': visit.branch.name,
        },
        'patient': {
            'patientCode': visit.patient.patient_code,
            'name': visit.patient.full_name,
            'phone': visit.patient.phone,
        },
    }
