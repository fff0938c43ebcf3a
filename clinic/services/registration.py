"""
Patient registration, repeat visits and doctor walk-ins.

Registration is one transaction: it validates the doctor and the branch
rate, mints a patient code from the per-branch counter, creates the
patient, visit and charge, optionally queues the visit and takes an
up-front payment.  The branch row is locked first so patient codes and
queue tokens are serialized per branch.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import (
    Branch, Doctor, Patient, PatientCounter, Payment, PaymentAllocation, ReferralPerson, Service,
    ServiceRate, Visit, VisitCharge,
)
from clinic.services import queue as queue_service
from clinic.services.audit import log_action
from clinic.services.dates import today, validate_visit_date
from clinic.services.lookups import active_payment_mode, branch_rate, get_service_by_code
from clinic.services.money import ZERO, clamp, to_money
from clinic.services.scope import Scope, acting_doctor, resolve_doctor_for_user

logger = logging.getLogger(__name__)

_PHONE = re.compile(r'^[0-9]{10}$')


def clean_phone(raw) -> Optional[str]:
    """Strip whitespace; ``None`` when empty.  Raises on anything but 10 digits."""
    phone = re.sub(r'\s+', '', str(raw or ''))
    if not phone:
        return None
    if not _PHONE.match(phone):
        raise ValidationError('Phone must be a valid 10-digit number.')
    return phone


def format_patient_code(branch_code: str, visit_date, seq: int) -> str:
    return f"OP_{branch_code}_{visit_date.year:04d}{visit_date.month:02d}{seq}"


def next_patient_seq(scope: Scope) -> int:
    counter = (
        PatientCounter.objects.select_for_update()
        .filter(organization_id=scope.organization_id, branch_id=scope.branch_id)
        .first()
    )
    if counter is None:
        PatientCounter.objects.create(
            organization_id=scope.organization_id, branch_id=scope.branch_id, next_seq=2
        )
        return 1
    seq = counter.next_seq
    counter.next_seq = seq + 1
    counter.save(update_fields=['next_seq'])
    return seq


def lock_branch(scope: Scope) -> Branch:
    branch = (
        Branch.objects.select_for_update()
        .filter(id=scope.branch_id, organization_id=scope.organization_id)
        .first()
    )
    if branch is None or not (branch.code or '').strip():
        raise ValidationError('Invalid branch.')
    return branch


def create_patient(scope: Scope, branch: Branch, visit_date, *, name: str, phone: Optional[str]) -> Patient:
    """Mint the next patient code of the (locked) branch and create the patient."""
    code = format_patient_code(branch.code.strip(), visit_date, next_patient_seq(scope))
    if Patient.objects.filter(patient_code=code).exists():
        logger.error('patient code collision code=%s branch=%s', code, branch.id)
        raise Conflict(f'Patient code {code} is already in use.')
    return Patient.objects.create(patient_code=code, full_name=name, phone=phone)


def resolve_referral(referral_id: Optional[str]) -> Optional[ReferralPerson]:
    if not referral_id:
        return None
    referral = ReferralPerson.objects.filter(id=referral_id).first()
    if referral is None:
        raise ValidationError('Invalid referral.')
    return referral


def record_payment(*, visit: Visit, service: Service, amount: Decimal, mode, user, note=None,
                   direction: str = Payment.PAYMENT) -> Payment:
    """Ledger row plus its signed allocation."""
    payment = Payment.objects.create(
        visit=visit,
        service=service,
        amount=amount,
        payment_mode=mode,
        pay_status=Payment.ACCEPTED,
        direction=direction,
        note=note,
        created_by=user if getattr(user, 'pk', None) else None,
    )
    PaymentAllocation.objects.create(
        payment=payment,
        visit=visit,
        service=service,
        amount=amount if direction == Payment.PAYMENT else -amount,
    )
    return payment


@dataclass
class RegistrationResult:
    visit: Visit
    patient: Patient
    queue_entry: Optional[object]
    payment: Optional[Payment]


@transaction.atomic
def register_patient(user, scope: Scope, *, visit_date, name: str, phone: Optional[str],
                     doctor_id: int, service_id: int, referral_id: Optional[str] = None,
                     discount: Decimal = ZERO, paid_now: Decimal = ZERO, payment_mode: str = '',
                     remarks: Optional[str] = None) -> RegistrationResult:
    doctor = Doctor.objects.filter(
        id=doctor_id,
        is_active=True,
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
    ).first()
    if doctor is None:
        raise ValidationError('Invalid doctor.')

    rate = (
        ServiceRate.objects.select_for_update()
        .select_related('service')
        .filter(
            service_id=service_id,
            service__organization_id=scope.organization_id,
            service__is_active=True,
            branch_id=scope.branch_id,
            is_active=True,
        )
        .first()
    )
    if rate is None:
        raise ValidationError('Invalid service or rate not configured for this branch.')
    gross = to_money(rate.rate)
    if gross < ZERO:
        raise ValidationError('Invalid configured rate for this service.')

    discount = clamp(to_money(discount), ZERO, gross)
    net = clamp(gross - discount, ZERO, gross)
    paid_now = clamp(to_money(paid_now), ZERO, net)
    payment_mode = (payment_mode or '').strip()
    if paid_now > ZERO and not payment_mode:
        raise ValidationError('Payment mode is required when collecting paid-now amount.')

    referral = resolve_referral(referral_id)

    branch = lock_branch(scope)
    patient = create_patient(scope, branch, visit_date, name=name, phone=phone)
    visit = Visit.objects.create(
        patient=patient,
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
        doctor=doctor,
        referral=referral,
        visit_date=visit_date,
        created_by=user,
    )
    VisitCharge.objects.create(
        visit=visit,
        service=rate.service,
        gross_amount=gross,
        discount_amount=discount,
        net_amount=net,
    )

    entry = queue_service.enqueue_visit(visit) if visit_date == today() else None

    payment = None
    if paid_now > ZERO:
        mode = active_payment_mode(payment_mode)
        if mode is None:
            raise ValidationError('Invalid payment mode.')
        payment = record_payment(visit=visit, service=rate.service, amount=paid_now, mode=mode,
                                 user=user, note=remarks)

    logger.info('registered patient=%s visit=%s branch=%s paid_now=%s',
                patient.patient_code, visit.id, scope.branch_id, paid_now)
    log_action(user=user, action='register', object_type='visit', object_id=visit.id,
               detail={'patientCode': patient.patient_code, 'net': str(net), 'paidNow': str(paid_now)})
    return RegistrationResult(visit=visit, patient=patient, queue_entry=entry, payment=payment)


@transaction.atomic
def open_new_visit(user, scope: Scope, patient_code: str, *, doctor_id: Optional[int] = None,
                   referral_id: Optional[str] = None,
                   service_code: str = Service.CONSULTATION) -> tuple[Visit, object]:
    """Today's visit for a returning patient, charged at the branch rate and queued."""
    own = acting_doctor(user, scope)
    if own is not None:
        doctor = own
    else:
        if not doctor_id:
            raise ValidationError('doctorId is required.')
        doctor = Doctor.objects.filter(
            id=doctor_id, is_active=True,
            organization_id=scope.organization_id, branch_id=scope.branch_id,
        ).first()
        if doctor is None:
            raise ValidationError('Invalid doctor.')

    patient = Patient.objects.filter(patient_code=patient_code).first()
    if patient is None:
        raise NotFound('Patient not found.')

    service = get_service_by_code(scope, (service_code or Service.CONSULTATION).strip().upper())
    if service is None:
        raise ValidationError(f'Service not configured: {service_code}')
    rate = branch_rate(scope, service, for_update=True)
    if rate is None:
        raise ValidationError('Invalid service or rate not configured for this branch.')

    if referral_id:
        referral = resolve_referral(referral_id)
    else:
        latest = patient.visits.filter(branch_id=scope.branch_id).order_by('-visit_date', '-id').first()
        referral = latest.referral if latest else None

    lock_branch(scope)
    visit = Visit.objects.create(
        patient=patient,
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
        doctor=doctor,
        referral=referral,
        visit_date=today(),
        created_by=user,
    )
    gross = to_money(rate.rate)
    VisitCharge.objects.create(visit=visit, service=service, gross_amount=gross,
                               discount_amount=ZERO, net_amount=gross)
    entry = queue_service.enqueue_visit(visit)
    log_action(user=user, action='new_visit', object_type='visit', object_id=visit.id,
               detail={'patientCode': patient.patient_code, 'token': entry.token_no})
    return visit, entry


@transaction.atomic
def register_walkin(user, scope: Scope, *, visit_date=None, patient_code: Optional[str] = None,
                    patient_id: Optional[int] = None, name: str = '', phone: Optional[str] = None,
                    referral_id: Optional[str] = None) -> dict:
    """Doctor-side walk-in: find or create the patient, reuse or open the visit, ensure a token.

    Walk-ins are not charged; the front desk bills them like any other
    visit.  Only visits dated today get a queue token.
    """
    doctor = resolve_doctor_for_user(user, scope)
    if doctor is None:
        raise ValidationError('Doctor account is not linked to a doctor profile.')
    visit_date = validate_visit_date(visit_date) if visit_date else today()
    referral = resolve_referral(referral_id)

    branch = lock_branch(scope)
    if patient_code or patient_id:
        qs = Patient.objects.select_for_update()
        patient = (qs.filter(patient_code=patient_code) if patient_code else qs.filter(id=patient_id)).first()
        if patient is None:
            raise NotFound('Patient not found.')
        changed = []
        if name and name != patient.full_name:
            patient.full_name = name
            changed.append('full_name')
        if phone is not None and phone != patient.phone:
            patient.phone = phone
            changed.append('phone')
        if changed:
            patient.save(update_fields=changed)
    else:
        if not name:
            raise ValidationError('Patient name is required.')
        patient = create_patient(scope, branch, visit_date, name=name, phone=phone)

    visit = (
        Visit.objects.filter(patient=patient, organization_id=scope.organization_id, branch_id=scope.branch_id,
                             doctor=doctor, visit_date=visit_date)
        .order_by('-id')
        .first()
    )
    created = visit is None
    if created:
        visit = Visit.objects.create(
            patient=patient,
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
            doctor=doctor,
            referral=referral,
            visit_date=visit_date,
            created_by=user,
        )

    entry = getattr(visit, 'queue_entry', None) if not created else None
    if entry is None and visit_date == today():
        entry = queue_service.enqueue_visit(visit)

    logger.info('walk-in patient=%s visit=%s doctor=%s created=%s', patient.patient_code, visit.id, doctor.id, created)
    log_action(user=user, action='walkin', object_type='visit', object_id=visit.id,
               detail={'patientCode': patient.patient_code, 'created': created})
    return {
        'patientCode': patient.patient_code,
        'visitId': visit.id,
        'tokenNo': entry.token_no if entry else None,
        'visitDate': visit_date,
        'created': created,
    }
