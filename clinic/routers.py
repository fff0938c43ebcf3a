"""
URL mappings for the OPD desk API.

Paths carry no trailing slash (``APPEND_SLASH = False``).  Front desk
endpoints live under ``/api/reception``, the consulting room under
``/api/doctor``, and each department worklist under its own prefix.
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view
from .views import (
    analytics,
    billing,
    consultation,
    dashboard,
    health,
    lookups,
    notifications,
    patients,
    pharmacy,
    queues,
    registration,
    reports,
    scan,
    users,
)

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),

    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/me', me_view, name='me_view'),

    # Registration and queue
    path('api/reception/register', registration.register),
    path('api/patients/<str:patient_code>/new-visit', registration.new_visit),
    path('api/doctor/walkin', registration.walkin),
    path('api/doctor/walkin-register', registration.walkin_register),
    path('api/reception/queue/status', queues.queue_status),
    path('api/doctor/visits/<int:visit_id>/done', queues.visit_done),

    # Billing
    path('api/reception/payments/collect', billing.collect),
    path('api/reception/payments/refund', billing.refund),
    path('api/reception/payments/<int:payment_id>/voucher', billing.voucher),
    path('api/reception/visits/<int:visit_id>/consultation-charge', billing.consultation_charge),
    path('api/reception/visits/<int:visit_id>/consultation-charge/adjust', billing.consultation_charge_adjust),

    # Patients and visits
    path('api/reception/patients/search', patients.patient_search),
    path('api/patients/<str:patient_code>', patients.patient_by_code),
    path('api/reception/visits/<int:visit_id>', patients.visit_view),
    path('api/reception/visits/<int:visit_id>/edit', patients.visit_edit),
    path('api/visits/<int:visit_id>/summary', patients.visit_summary_view),
    path('api/doctor/patients', patients.doctor_patient_list),

    # Consultation
    path('api/doctor/visits/<int:visit_id>/consultation', consultation.consultation),
    path('api/visits/<int:visit_id>/orders', consultation.visit_orders),

    # Department worklists
    path('api/pharma/orders', pharmacy.pharma_orders),
    path('api/pharma/orders/<int:order_id>', pharmacy.pharma_order_detail),
    path('api/pharma/orders/<int:order_id>/status', pharmacy.pharma_order_status),
    path('api/scan/orders', scan.scan_orders),
    path('api/scan/orders/<int:order_id>', scan.scan_order),

    # Notifications
    path('api/notifications', notifications.notifications),
    path('api/notifications/unread-count', notifications.notifications_unread_count),
    path('api/notifications/<int:notification_id>/read', notifications.notification_read),

    # Lookups
    path('api/reception/referrals', lookups.referrals),
    path('api/reception/doctors', lookups.doctors),
    path('api/reception/services', lookups.services),
    path('api/reception/payment-modes', lookups.payment_modes),
    path('api/medicines', lookups.medicines),

    # Dashboards
    path('api/reception/dashboard', dashboard.reception_dashboard_view),
    path('api/doctor/dashboard', dashboard.doctor_dashboard_view),

    # Reports
    path('api/reports/consultations/eod', reports.eod_report),
    path('api/reports/consultations/pending', reports.pending_report),
    path('api/reports/common', reports.common),
    path('api/admin/reports/pharma', reports.pharma),
    path('api/doctor/analytics', analytics.doctor_analytics_view),
    path('api/doctor/reports', analytics.doctor_report_view),

    # Administration
    path('api/admin/users', users.admin_users),
]
