"""
Consulting room and department worklists: notes, orders, prescriptions,
the pharmacy hand-off, the scan desk and in-app notifications.
"""
from datetime import timedelta

from rest_framework.test import APITestCase

from clinic.models import (
    Notification, PharmaOrder, Prescription, PrescriptionItem, Service, Visit, VisitDiscountNote, VisitNote,
    VisitOrder,
)
from clinic.services.dates import today
from clinic.tests.builders import make_branch, make_doctor, make_user, register, service


def consultation_payload(**overrides):
    data = {
        'diagnosis': 'Viral fever',
        'investigation': 'CBC',
        'treatment': 'Rest and fluids',
        'remarks': 'Review in 3 days',
        'orders': {
            'scan': {'needed': True, 'details': 'Abdomen USG'},
            'lab': {'needed': True, 'details': 'CBC, CRP'},
        },
        'prescription': {
            'notes': 'After food',
            'items': [
                {'medicineName': 'Paracetamol 650', 'dosage': '1 tab', 'morning': True, 'night': True,
                 'durationDays': 3, 'sortOrder': 1},
                {'medicineName': '   '},
                {'medicineName': 'ORS', 'instructions': 'As needed', 'sortOrder': 2},
            ],
        },
        'discountNotes': {'scan': 'Staff relative', 'pap_smear': 'Not ordered'},
    }
    data.update(overrides)
    return data


class ConsultationFlowTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.pharmacist = make_user(self.branch, 'pharma@clinic.test', 'PHARMA_IN_CHARGE')
        self.result = register(self.reception, self.branch, self.doctor)
        self.visit = self.result.visit
        self.url = f'/api/doctor/visits/{self.visit.id}/consultation'
        self.client.force_authenticate(self.doctor_user)

    def test_empty_consultation(self):
        r = self.client.get(self.url)
        self.assertEqual(r.status_code, 200, r.data)
        self.assertIsNone(r.data['note'])
        self.assertIsNone(r.data['prescription'])
        self.assertEqual(r.data['orders'], [])
        self.assertEqual(r.data['visit']['patientCode'], self.result.patient.patient_code)

    def test_save_writes_note_orders_prescription_and_pharma_order(self):
        r = self.client.post(self.url, consultation_payload(), format='json')
        self.assertEqual(r.status_code, 200, r.data)
        rx = Prescription.objects.get(id=r.data['prescriptionId'])
        self.assertEqual(rx.visit_id, self.visit.id)

        self.assertEqual(VisitNote.objects.get(visit=self.visit).diagnosis, 'Viral fever')
        self.assertEqual(
            list(PrescriptionItem.objects.filter(prescription=rx).values_list('medicine_name', flat=True)),
            ['Paracetamol 650', 'ORS'],
        )
        codes = sorted(VisitOrder.objects.filter(visit=self.visit).values_list('service__code', flat=True))
        self.assertEqual(codes, [Service.LAB, Service.SCAN])
        self.assertEqual(PharmaOrder.objects.get(visit=self.visit).status, PharmaOrder.PENDING)
        self.assertEqual(Visit.objects.get(id=self.visit.id).status, Visit.IN_PROGRESS)

        # only the note for an ordered service survives
        notes = dict(VisitDiscountNote.objects.filter(visit=self.visit).values_list('service__code', 'discount_note'))
        self.assertEqual(notes, {Service.SCAN: 'Staff relative'})

        note = Notification.objects.get(recipient=self.pharmacist)
        self.assertEqual(note.route, f'/pharma/orders/{PharmaOrder.objects.get(visit=self.visit).id}')

        r = self.client.get(self.url)
        self.assertEqual(len(r.data['prescriptionItems']), 2)
        self.assertEqual({o['orderType'] for o in r.data['orders']}, {'SCAN', 'LAB'})
        self.assertEqual(r.data['discountNotes'], {'SCAN': 'Staff relative'})

    def test_resave_cancels_unneeded_orders_and_does_not_renotify(self):
        self.client.post(self.url, consultation_payload(), format='json')
        r = self.client.post(self.url, consultation_payload(orders={'scan': {'needed': True, 'details': 'Pelvis'}}),
                             format='json')
        self.assertEqual(r.status_code, 200, r.data)
        lab = VisitOrder.objects.get(visit=self.visit, service__code=Service.LAB)
        self.assertEqual(lab.status, VisitOrder.CANCELLED)
        scan = VisitOrder.objects.get(visit=self.visit, service__code=Service.SCAN)
        self.assertEqual(scan.notes, 'Pelvis')
        self.assertEqual(Notification.objects.filter(recipient=self.pharmacist).count(), 1)

    def test_clearing_items_drops_pending_pharma_order(self):
        self.client.post(self.url, consultation_payload(), format='json')
        r = self.client.post(self.url, consultation_payload(prescription={'items': []}), format='json')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertFalse(PharmaOrder.objects.filter(visit=self.visit).exists())

    def test_purchased_order_stays_final_on_resave(self):
        self.client.post(self.url, consultation_payload(), format='json')
        PharmaOrder.objects.filter(visit=self.visit).update(status=PharmaOrder.PURCHASED)
        self.client.post(self.url, consultation_payload(), format='json')
        self.assertEqual(PharmaOrder.objects.get(visit=self.visit).status, PharmaOrder.PURCHASED)

    def test_missing_service_only_fails_when_ordered(self):
        Service.objects.filter(code=Service.CTG).update(is_active=False)
        r = self.client.post(self.url, consultation_payload(), format='json')
        self.assertEqual(r.status_code, 200, r.data)
        r = self.client.post(self.url, consultation_payload(orders={'ctg': {'needed': True}}), format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Service not configured: CTG')

    def test_other_doctor_is_forbidden(self):
        colleague = make_user(self.branch, 'ravi@clinic.test', 'DOCTOR')
        make_doctor(self.branch, 'Dr. Ravi', user=colleague)
        self.client.force_authenticate(colleague)
        self.assertEqual(self.client.get(self.url).status_code, 403)
        self.assertEqual(self.client.post(self.url, consultation_payload(), format='json').status_code, 403)

    def test_admin_can_open_any_branch_visit(self):
        self.client.force_authenticate(make_user(self.branch, 'admin@clinic.test', 'ADMIN'))
        self.assertEqual(self.client.get(self.url).status_code, 200)

    def test_ad_hoc_order(self):
        r = self.client.post(f'/api/visits/{self.visit.id}/orders', {'serviceCode': 'pap_smear', 'notes': 'Routine'},
                             format='json')
        self.assertEqual(r.status_code, 201, r.data)
        order = VisitOrder.objects.get(id=r.data['orderId'])
        self.assertEqual(order.service.code, Service.PAP)
        self.assertEqual(order.status, VisitOrder.ORDERED)

        r = self.client.post(f'/api/visits/{self.visit.id}/orders', {'serviceCode': 'MRI'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Service not configured: MRI')


class PharmacyWorklistTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.pharmacist = make_user(self.branch, 'pharma@clinic.test', 'PHARMA_IN_CHARGE')

        self.today_visit = register(self.reception, self.branch, self.doctor, name='Today Patient').visit
        self.old_visit = register(self.reception, self.branch, self.doctor, name='Old Patient',
                                  visit_date=today() - timedelta(days=2)).visit
        self.client.force_authenticate(self.doctor_user)
        for visit in (self.today_visit, self.old_visit):
            self.client.post(f'/api/doctor/visits/{visit.id}/consultation', consultation_payload(), format='json')
        self.order = PharmaOrder.objects.get(visit=self.today_visit)
        self.client.force_authenticate(self.pharmacist)

    def test_defaults_to_todays_pending(self):
        r = self.client.get('/api/pharma/orders')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual(r.data['status'], 'PENDING')
        self.assertEqual([row['orderId'] for row in r.data['rows']], [self.order.id])
        self.assertEqual(r.data['rows'][0]['medicines'], 'Paracetamol 650, ORS')

    def test_all_days_and_search(self):
        r = self.client.get('/api/pharma/orders', {'today': '0', 'status': 'all'})
        self.assertEqual(len(r.data['rows']), 2)
        r = self.client.get('/api/pharma/orders', {'today': '0', 'q': 'old pat'})
        self.assertEqual([row['patientName'] for row in r.data['rows']], ['Old Patient'])

    def test_detail_and_status(self):
        r = self.client.get(f'/api/pharma/orders/{self.order.id}')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['order']['patientName'], 'Today Patient')
        self.assertEqual(len(r.data['items']), 2)

        r = self.client.post(f'/api/pharma/orders/{self.order.id}/status', {'status': 'purchased'}, format='json')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual(r.data['status'], PharmaOrder.PURCHASED)

        r = self.client.post(f'/api/pharma/orders/{self.order.id}/status', {'status': 'PENDING'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid status. Use PURCHASED or NOT_PURCHASED.')

    def test_other_branch_cannot_see_order(self):
        other = make_branch('OTHER')
        self.client.force_authenticate(make_user(other, 'pharma2@clinic.test', 'PHARMA_IN_CHARGE'))
        self.assertEqual(self.client.get(f'/api/pharma/orders/{self.order.id}').status_code, 404)

    def test_reception_is_not_pharmacy(self):
        self.client.force_authenticate(self.reception)
        self.assertEqual(self.client.get('/api/pharma/orders').status_code, 403)


class ScanWorklistTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.visit = register(self.reception, self.branch, self.doctor).visit
        self.order = VisitOrder.objects.create(visit=self.visit, service=service(self.branch, Service.SCAN),
                                               notes='Obstetric USG', ordered_by=self.doctor_user)
        self.client.force_authenticate(make_user(self.branch, 'scan@clinic.test', 'SCAN_IN_CHARGE'))

    def test_worklist_defaults_to_ordered(self):
        r = self.client.get('/api/scan/orders')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual([row['orderId'] for row in r.data['rows']], [self.order.id])
        r = self.client.get('/api/scan/orders', {'status': 'COMPLETED'})
        self.assertEqual(r.data['rows'], [])

    def test_worklist_validation(self):
        r = self.client.get('/api/scan/orders', {'status': 'LOST'})
        self.assertEqual(r.data['error']['message'], 'Invalid status.')
        r = self.client.get('/api/scan/orders', {'date': '19-10-2026'})
        self.assertEqual(r.data['error']['message'], 'Invalid date. Use YYYY-MM-DD.')

    def test_workflow_transitions(self):
        url = f'/api/scan/orders/{self.order.id}'
        r = self.client.get(url)
        self.assertEqual(r.data['order']['notes'], 'Obstetric USG')

        r = self.client.post(url, {'status': 'COMPLETED'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Cannot move order from ORDERED to COMPLETED.')

        self.assertEqual(self.client.post(url, {'status': 'in_progress'}, format='json').data['status'],
                         VisitOrder.IN_PROGRESS)
        self.assertEqual(self.client.post(url, {'status': 'COMPLETED'}, format='json').data['status'],
                         VisitOrder.COMPLETED)
        r = self.client.post(url, {'status': 'CANCELLED'}, format='json')
        self.assertEqual(r.status_code, 400)

    def test_non_scan_orders_are_invisible(self):
        lab = VisitOrder.objects.create(visit=self.visit, service=service(self.branch, Service.LAB))
        self.assertEqual(self.client.get(f'/api/scan/orders/{lab.id}').status_code, 404)


class NotificationTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.user = make_user(self.branch, 'pharma@clinic.test', 'PHARMA_IN_CHARGE')
        self.other = make_user(self.branch, 'pharma2@clinic.test', 'PHARMA_IN_CHARGE')
        common = {'organization_id': self.branch.organization_id, 'branch': self.branch}
        self.n1 = Notification.objects.create(recipient=self.user, title='First', **common)
        self.n2 = Notification.objects.create(recipient=self.user, title='Second', **common)
        self.foreign = Notification.objects.create(recipient=self.other, title='Not yours', **common)
        self.client.force_authenticate(self.user)

    def test_list_read_and_count(self):
        r = self.client.get('/api/notifications')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual({row['title'] for row in r.data['rows']}, {'First', 'Second'})
        self.assertEqual(self.client.get('/api/notifications/unread-count').data['count'], 2)

        r = self.client.post(f'/api/notifications/{self.n1.id}/read')
        self.assertTrue(r.data['changed'])
        r = self.client.post(f'/api/notifications/{self.n1.id}/read')
        self.assertFalse(r.data['changed'])

        self.assertEqual(self.client.get('/api/notifications/unread-count').data['count'], 1)
        r = self.client.get('/api/notifications', {'status': 'read'})
        self.assertEqual([row['id'] for row in r.data['rows']], [self.n1.id])

    def test_limit_is_clamped(self):
        r = self.client.get('/api/notifications', {'limit': '1'})
        self.assertEqual(len(r.data['rows']), 1)

    def test_cannot_read_someone_elses(self):
        r = self.client.post(f'/api/notifications/{self.foreign.id}/read')
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.data['changed'])
        self.foreign.refresh_from_db()
        self.assertEqual(self.foreign.status, Notification.UNREAD)
