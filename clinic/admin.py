"""
Django admin registrations for the clinic models.

Reference data (branches, services, rates, payment modes) is what
administrators edit here most; the visit ledger is exposed read-mostly
for support lookups.
"""

from django.contrib import admin

from .models import (
    AuditEvent,
    Branch,
    Doctor,
    Medicine,
    Notification,
    Organization,
    Patient,
    Payment,
    PaymentMode,
    PharmaOrder,
    QueueEntry,
    ReferralPerson,
    Role,
    Service,
    ServiceRate,
    User,
    Visit,
    VisitCharge,
    VisitOrder,
)


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'is_active', 'created_at')
    search_fields = ('name',)


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'code', 'organization', 'is_active')
    list_filter = ('organization', 'is_active')
    search_fields = ('name', 'code')


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ('code', 'name')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'full_name', 'organization', 'branch', 'is_active', 'is_superuser')
    list_filter = ('organization', 'branch', 'roles', 'is_active')
    search_fields = ('email', 'full_name')
    filter_horizontal = ('roles',)
    exclude = ('password', 'user_permissions', 'groups')


@admin.register(Doctor)
class DoctorAdmin(admin.ModelAdmin):
    list_display = ('id', 'full_name', 'branch', 'phone', 'user', 'is_active')
    list_filter = ('branch', 'is_active')
    search_fields = ('full_name', 'phone', 'user__email')


@admin.register(ReferralPerson)
class ReferralPersonAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'created_at')
    search_fields = ('name',)


@admin.register(Medicine)
class MedicineAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name',)


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('id', 'code', 'display_name', 'organization', 'is_active')
    list_filter = ('organization', 'is_active')
    search_fields = ('code', 'display_name')


@admin.register(ServiceRate)
class ServiceRateAdmin(admin.ModelAdmin):
    list_display = ('service', 'branch', 'rate', 'is_active')
    list_filter = ('branch', 'is_active')


@admin.register(PaymentMode)
class PaymentModeAdmin(admin.ModelAdmin):
    list_display = ('code', 'display_name', 'sort_order', 'is_active')
    list_editable = ('sort_order', 'is_active')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_code', 'full_name', 'phone', 'created_at')
    search_fields = ('patient_code', 'full_name', 'phone')


@admin.register(Visit)
class VisitAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'branch', 'doctor', 'visit_date', 'status')
    list_filter = ('branch', 'status', 'visit_date')
    search_fields = ('patient__patient_code', 'patient__full_name')
    raw_id_fields = ('patient', 'doctor', 'referral', 'created_by')


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ('visit', 'token_no', 'status', 'updated_at')
    list_filter = ('status',)
    raw_id_fields = ('visit',)


@admin.register(VisitCharge)
class VisitChargeAdmin(admin.ModelAdmin):
    list_display = ('visit', 'service', 'gross_amount', 'discount_amount', 'net_amount')
    raw_id_fields = ('visit',)


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'visit', 'service', 'amount', 'payment_mode', 'direction', 'pay_status', 'created_at')
    list_filter = ('direction', 'pay_status', 'payment_mode')
    raw_id_fields = ('visit', 'created_by')


@admin.register(VisitOrder)
class VisitOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'visit', 'service', 'status', 'ordered_at')
    list_filter = ('status', 'service')
    raw_id_fields = ('visit', 'ordered_by')


@admin.register(PharmaOrder)
class PharmaOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'visit', 'status', 'updated_by', 'updated_at')
    list_filter = ('status',)
    raw_id_fields = ('visit', 'prescription', 'updated_by')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'recipient', 'title', 'severity', 'status', 'created_at')
    list_filter = ('status', 'severity', 'branch')
    search_fields = ('title', 'recipient__email')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('user__email', 'object_id')
