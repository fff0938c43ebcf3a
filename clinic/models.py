"""
Database models for the OPD desk backend.

The schema follows the clinic's day-to-day flow: organizations own
branches, branches register patients into visits, visits carry a queue
token, service charges and a payment ledger, and doctors attach notes,
orders and prescriptions to a visit.  Money is stored as ``Decimal``
with two places everywhere.
"""
from __future__ import annotations

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.db.models.functions import Lower


class Organization(models.Model):
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.name


class Branch(models.Model):
    """A physical clinic of an organization.

    The branch ``code`` is embedded in every patient code issued by the
    branch, so it should be short and stable (e.g. ``SMNH-MCC``).  Patient
    codes are unique across organizations, hence so are branch codes.
    """
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='branches')
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class Role(models.Model):
    SUPER_ADMIN = 'SUPER_ADMIN'
    ADMIN = 'ADMIN'
    DOCTOR = 'DOCTOR'
    DATA_ENTRY = 'DATA_ENTRY'
    RECEPTION = 'RECEPTION'
    SCAN_IN_CHARGE = 'SCAN_IN_CHARGE'
    PAP_SMEAR_IN_CHARGE = 'PAP_SMEAR_IN_CHARGE'
    CTG_IN_CHARGE = 'CTG_IN_CHARGE'
    LAB_IN_CHARGE = 'LAB_IN_CHARGE'
    PHARMA_IN_CHARGE = 'PHARMA_IN_CHARGE'

    CODE_CHOICES = [
        (SUPER_ADMIN, 'Super Admin'),
        (ADMIN, 'Admin'),
        (DOCTOR, 'Doctor'),
        (DATA_ENTRY, 'Data Entry'),
        (RECEPTION, 'Reception'),
        (SCAN_IN_CHARGE, 'Scan In-charge'),
        (PAP_SMEAR_IN_CHARGE, 'Pap Smear In-charge'),
        (CTG_IN_CHARGE, 'CTG In-charge'),
        (LAB_IN_CHARGE, 'Lab In-charge'),
        (PHARMA_IN_CHARGE, 'Pharmacy In-charge'),
    ]

    code = models.CharField(max_length=32, primary_key=True, choices=CODE_CHOICES)
    name = models.CharField(max_length=64)

    def __str__(self) -> str:
        return self.code


class UserManager(BaseUserManager):
    """Email-first manager; ``username`` mirrors the email."""
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email).strip().lower()
        extra_fields.setdefault('username', email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', False)
        extra_fields.setdefault('is_superuser', False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    """Staff account bound to one organization and branch.

    A user can hold several roles at once (for example ADMIN and
    DOCTOR).  Role checks go through :meth:`has_any_role`, which caches
    the role codes on the instance for the lifetime of a request.
    """
    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=255, blank=True)
    organization = models.ForeignKey(
        Organization, null=True, blank=True, on_delete=models.SET_NULL, related_name='users'
    )
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.SET_NULL, related_name='users'
    )
    roles = models.ManyToManyField(Role, blank=True, related_name='users')

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    objects = UserManager()

    def __str__(self) -> str:
        return self.email

    @property
    def display_name(self) -> str:
        return self.full_name or self.get_full_name() or self.email

    @property
    def role_codes(self) -> set[str]:
        cached = getattr(self, '_role_codes', None)
        if cached is None:
            cached = set(self.roles.values_list('code', flat=True)) if self.pk else set()
            self._role_codes = cached
        return cached

    def has_any_role(self, *codes: str) -> bool:
        return bool(self.role_codes.intersection(codes))

    @property
    def is_admin(self) -> bool:
        return self.has_any_role(Role.ADMIN, Role.SUPER_ADMIN)

    def set_roles(self, codes) -> None:
        names = dict(Role.CODE_CHOICES)
        objs = []
        for code in codes:
            role, _ = Role.objects.get_or_create(code=code, defaults={'name': names.get(code, code)})
            objs.append(role)
        self.roles.set(objs)
        self._role_codes = {r.code for r in objs}


class Doctor(models.Model):
    """Consulting doctor of a branch; optionally linked to a login."""
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='doctors')
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='doctors')
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=20, blank=True, null=True)
    specialization = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    user = models.OneToOneField(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='doctor_profile'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.full_name


def _referral_id() -> str:
    return str(uuid.uuid4())


class ReferralPerson(models.Model):
    id = models.CharField(max_length=36, primary_key=True, default=_referral_id, editable=False)
    name = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['name'])]

    def __str__(self) -> str:
        return self.name


class Medicine(models.Model):
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(Lower('name'), name='uniq_medicine_name_ci'),
        ]

    def __str__(self) -> str:
        return self.name


class Service(models.Model):
    CONSULTATION = 'CONSULTATION'
    SCAN = 'SCAN'
    PAP = 'PAP'
    CTG = 'CTG'
    LAB = 'LAB'
    PHARMA = 'PHARMA'
    STANDARD_CODES = [CONSULTATION, SCAN, PAP, CTG, LAB, PHARMA]

    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='services')
    code = models.CharField(max_length=32)
    display_name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['organization', 'code'], name='uniq_service_code_per_org'),
        ]

    def __str__(self) -> str:
        return f"{self.code} ({self.organization_id})"


class ServiceRate(models.Model):
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='rates')
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='service_rates')
    rate = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['service', 'branch'], name='uniq_rate_per_branch'),
        ]

    def __str__(self) -> str:
        return f"{self.service.code}@{self.branch_id} = {self.rate}"


class PaymentMode(models.Model):
    code = models.CharField(max_length=32, primary_key=True)
    display_name = models.CharField(max_length=64)
    sort_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return self.code


class Patient(models.Model):
    patient_code = models.CharField(max_length=64, unique=True)
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=20, blank=True, null=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.patient_code} {self.full_name}"


class PatientCounter(models.Model):
    """Per-branch sequence used to mint patient codes."""
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE)
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE)
    next_seq = models.PositiveIntegerField(default=1)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['organization', 'branch'], name='uniq_patient_counter'),
        ]


class Visit(models.Model):
    REGISTERED = 'REGISTERED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'
    STATUS_CHOICES = [
        (REGISTERED, 'Registered'),
        (IN_PROGRESS, 'In progress'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
        (NO_SHOW, 'No show'),
    ]
    CLOSED_STATUSES = (CANCELLED, NO_SHOW)

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='visits')
    organization = models.ForeignKey(Organization, on_delete=models.PROTECT, related_name='visits')
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name='visits')
    doctor = models.ForeignKey(Doctor, on_delete=models.PROTECT, related_name='visits')
    referral = models.ForeignKey(
        ReferralPerson, null=True, blank=True, on_delete=models.SET_NULL, related_name='visits'
    )
    visit_date = models.DateField(db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=REGISTERED, db_index=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['organization', 'branch', 'visit_date']),
            models.Index(fields=['doctor', 'visit_date']),
        ]

    def __str__(self) -> str:
        return f"Visit {self.pk} {self.visit_date}"


class QueueEntry(models.Model):
    WAITING = 'WAITING'
    NEXT = 'NEXT'
    IN_ROOM = 'IN_ROOM'
    COMPLETED = 'COMPLETED'
    DONE = 'DONE'
    STATUS_CHOICES = [
        (WAITING, 'Waiting'),
        (NEXT, 'Next'),
        (IN_ROOM, 'In room'),
        (COMPLETED, 'Completed'),
        (DONE, 'Done'),
    ]
    # statuses the front desk is allowed to set
    RECEPTION_STATUSES = (WAITING, NEXT, IN_ROOM, COMPLETED)

    visit = models.OneToOneField(Visit, on_delete=models.CASCADE, related_name='queue_entry')
    token_no = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=WAITING, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Token {self.token_no} ({self.status})"


class VisitCharge(models.Model):
    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='charges')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='charges')
    gross_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    net_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Charge v={self.visit_id} s={self.service_id} net={self.net_amount}"


class Payment(models.Model):
    """One row of the payment ledger.

    ``amount`` is always positive; the direction says whether money came
    in or went out.  The signed effect on a visit's balance lives in
    :class:`PaymentAllocation`.
    """
    ACCEPTED = 'ACCEPTED'
    PENDING = 'PENDING'
    WAIVED = 'WAIVED'
    PAY_STATUS_CHOICES = [(ACCEPTED, 'Accepted'), (PENDING, 'Pending'), (WAIVED, 'Waived')]

    PAYMENT = 'PAYMENT'
    REFUND = 'REFUND'
    DIRECTION_CHOICES = [(PAYMENT, 'Payment'), (REFUND, 'Refund')]

    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='payments')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    payment_mode = models.ForeignKey(PaymentMode, on_delete=models.PROTECT, related_name='payments')
    pay_status = models.CharField(max_length=16, choices=PAY_STATUS_CHOICES, default=ACCEPTED, db_index=True)
    direction = models.CharField(max_length=16, choices=DIRECTION_CHOICES, default=PAYMENT, db_index=True)
    note = models.CharField(max_length=500, blank=True, null=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    def __str__(self) -> str:
        return f"{self.direction} {self.amount} v={self.visit_id}"


class PaymentAllocation(models.Model):
    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, related_name='allocations')
    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='allocations')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='allocations')
    # negative for refunds
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['visit', 'service'])]


class ConsultationChargeAdjustment(models.Model):
    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='charge_adjustments')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='+')
    old_gross_amount = models.DecimalField(max_digits=10, decimal_places=2)
    old_discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    old_net_amount = models.DecimalField(max_digits=10, decimal_places=2)
    new_discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    new_net_amount = models.DecimalField(max_digits=10, decimal_places=2)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    refund_payment = models.ForeignKey(Payment, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    reason = models.CharField(max_length=500)
    authorized_by = models.ForeignKey(Doctor, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)


class VisitNote(models.Model):
    visit = models.OneToOneField(Visit, on_delete=models.CASCADE, related_name='note')
    diagnosis = models.TextField(blank=True, null=True)
    investigation = models.TextField(blank=True, null=True)
    treatment = models.TextField(blank=True, null=True)
    remarks = models.TextField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)


class Prescription(models.Model):
    visit = models.OneToOneField(Visit, on_delete=models.CASCADE, related_name='prescription')
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class PrescriptionItem(models.Model):
    prescription = models.ForeignKey(Prescription, on_delete=models.CASCADE, related_name='items')
    medicine_name = models.CharField(max_length=255)
    dosage = models.CharField(max_length=100, blank=True, null=True)
    morning = models.BooleanField(default=False)
    afternoon = models.BooleanField(default=False)
    night = models.BooleanField(default=False)
    before_food = models.BooleanField(default=False)
    duration_days = models.PositiveIntegerField(null=True, blank=True)
    instructions = models.CharField(max_length=500, blank=True, null=True)
    sort_order = models.IntegerField(default=0)

    class Meta:
        ordering = ['sort_order', 'id']


class PharmaOrder(models.Model):
    PENDING = 'PENDING'
    PURCHASED = 'PURCHASED'
    NOT_PURCHASED = 'NOT_PURCHASED'
    STATUS_CHOICES = [(PENDING, 'Pending'), (PURCHASED, 'Purchased'), (NOT_PURCHASED, 'Not purchased')]
    FINAL_STATUSES = (PURCHASED, NOT_PURCHASED)

    visit = models.OneToOneField(Visit, on_delete=models.CASCADE, related_name='pharma_order')
    prescription = models.ForeignKey(Prescription, on_delete=models.CASCADE, related_name='pharma_orders')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    updated_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class VisitOrder(models.Model):
    ORDERED = 'ORDERED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    STATUS_CHOICES = [
        (ORDERED, 'Ordered'),
        (IN_PROGRESS, 'In progress'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
    ]

    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='orders')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='orders')
    notes = models.TextField(blank=True, default='')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=ORDERED, db_index=True)
    ordered_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    ordered_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Order {self.pk} {self.service_id} {self.status}"


class VisitDiscountNote(models.Model):
    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='discount_notes')
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='+')
    discount_note = models.CharField(max_length=500)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['visit', 'service'], name='uniq_discount_note'),
        ]


class Notification(models.Model):
    UNREAD = 'UNREAD'
    READ = 'READ'
    ARCHIVED = 'ARCHIVED'
    STATUS_CHOICES = [(UNREAD, 'Unread'), (READ, 'Read'), (ARCHIVED, 'Archived')]

    INFO = 'INFO'
    WARNING = 'WARNING'
    CRITICAL = 'CRITICAL'
    SEVERITY_CHOICES = [(INFO, 'Info'), (WARNING, 'Warning'), (CRITICAL, 'Critical')]

    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='+')
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='+')
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default='')
    severity = models.CharField(max_length=16, choices=SEVERITY_CHOICES, default=INFO)
    priority = models.PositiveSmallIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=UNREAD, db_index=True)
    route = models.CharField(max_length=255, blank=True, null=True)
    action_label = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=['recipient', 'status', 'created_at'])]


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]
