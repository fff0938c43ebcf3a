"""
Consulting room extras: walk-ins, doctor analytics, the doctor visit
report and the per-visit payment summary.
"""
from datetime import timedelta
from decimal import Decimal

from rest_framework.test import APITestCase

from clinic.models import (
    Patient, Payment, PaymentMode, Prescription, PrescriptionItem, QueueEntry, ReferralPerson, Service, Visit,
    VisitCharge, VisitNote, VisitOrder,
)
from clinic.services.dates import today
from clinic.services.registration import record_payment
from clinic.tests.builders import make_branch, make_doctor, make_user, register, service

WALKIN_URL = '/api/doctor/walkin'
WALKIN_REGISTER_URL = '/api/doctor/walkin-register'


class WalkInAPITests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.earlier = register(self.reception, self.branch, self.doctor, visit_date=today() - timedelta(days=20))
        self.client.force_authenticate(self.doctor_user)

    def test_existing_patient_gets_uncharged_visit_and_token(self):
        code = self.earlier.patient.patient_code
        r = self.client.post(WALKIN_URL, {'patientCode': code}, format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertTrue(r.data['created'])
        self.assertEqual(r.data['patientCode'], code)
        self.assertEqual(r.data['tokenNo'], 1)
        self.assertEqual(r.data['visitDate'], today())

        visit = Visit.objects.get(id=r.data['visitId'])
        self.assertEqual(visit.doctor_id, self.doctor.id)
        self.assertFalse(VisitCharge.objects.filter(visit=visit).exists())
        self.assertEqual(QueueEntry.objects.get(visit=visit).status, QueueEntry.WAITING)

    def test_repeat_walkin_reuses_the_days_visit(self):
        code = self.earlier.patient.patient_code
        first = self.client.post(WALKIN_URL, {'patientCode': code}, format='json')
        again = self.client.post(WALKIN_URL, {'patientCode': code, 'phone': '9000000001'}, format='json')
        self.assertEqual(again.status_code, 201, again.data)
        self.assertFalse(again.data['created'])
        self.assertEqual(again.data['visitId'], first.data['visitId'])
        self.assertEqual(again.data['tokenNo'], first.data['tokenNo'])
        self.assertEqual(QueueEntry.objects.filter(visit_id=first.data['visitId']).count(), 1)
        self.assertEqual(Patient.objects.get(patient_code=code).phone, '9000000001')

    def test_new_patient_gets_next_branch_code(self):
        r = self.client.post(WALKIN_URL, {'newPatient': {'fullName': '<b>Arun K</b>', 'phone': '9123456780'}},
                             format='json')
        self.assertEqual(r.status_code, 201, r.data)
        d = today()
        self.assertEqual(r.data['patientCode'], f'OP_MCC_{d.year:04d}{d.month:02d}2')
        self.assertEqual(Patient.objects.get(patient_code=r.data['patientCode']).full_name, 'Arun K')

    def test_past_walkin_is_not_queued(self):
        r = self.client.post(WALKIN_URL, {
            'patientCode': self.earlier.patient.patient_code,
            'visitDate': (today() - timedelta(days=1)).isoformat(),
        }, format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertIsNone(r.data['tokenNo'])
        self.assertFalse(QueueEntry.objects.filter(visit_id=r.data['visitId']).exists())

    def test_validation_messages(self):
        cases = [
            ({}, 400, 'patientCode is required.'),
            ({'newPatient': {'fullName': '  '}}, 400, 'Patient name is required.'),
            ({'newPatient': {'fullName': 'Arun', 'phone': '123'}}, 400, 'Phone must be a valid 10-digit number.'),
            ({'patientCode': 'OP_MCC_2020011', 'visitDate': '2024-13-01'}, 400,
             'Visit date must be in YYYY-MM-DD format.'),
            ({'patientCode': 'OP_NOPE_2020011'}, 404, 'Patient not found.'),
            ({'patientCode': self.earlier.patient.patient_code, 'referralId': 'missing'}, 400, 'Invalid referral.'),
        ]
        for payload, status, message in cases:
            r = self.client.post(WALKIN_URL, payload, format='json')
            self.assertEqual(r.status_code, status, (payload, r.data))
            self.assertEqual(r.data['error']['message'], message)
        self.assertEqual(Visit.objects.count(), 1)

    def test_admin_without_doctor_profile_is_rejected(self):
        self.client.force_authenticate(make_user(self.branch, 'admin@clinic.test', 'ADMIN'))
        r = self.client.post(WALKIN_URL, {'patientCode': self.earlier.patient.patient_code}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Doctor account is not linked to a doctor profile.')

    def test_reception_cannot_walk_in(self):
        self.client.force_authenticate(self.reception)
        r = self.client.post(WALKIN_URL, {'patientCode': self.earlier.patient.patient_code}, format='json')
        self.assertEqual(r.status_code, 403)

    def test_walkin_register_by_patient_id_and_new(self):
        patient = self.earlier.patient
        r = self.client.post(WALKIN_REGISTER_URL, {'patientDbId': patient.id, 'name': 'Lakshmi Raman'},
                             format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertEqual(r.data['patientCode'], patient.patient_code)
        patient.refresh_from_db()
        self.assertEqual(patient.full_name, 'Lakshmi Raman')

        r = self.client.post(WALKIN_REGISTER_URL, {'name': 'Devi S', 'phone': '9555555555'}, format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertTrue(r.data['created'])
        self.assertEqual(Patient.objects.get(patient_code=r.data['patientCode']).phone, '9555555555')

        r = self.client.post(WALKIN_REGISTER_URL, {'patientDbId': patient.id}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Name is required.')


class DoctorAnalyticsTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.colleague_user = make_user(self.branch, 'ravi@clinic.test', 'DOCTOR')
        self.colleague = make_doctor(self.branch, 'Dr. Ravi', user=self.colleague_user)
        self.admin = make_user(self.branch, 'admin@clinic.test', 'ADMIN')
        self.ref = ReferralPerson.objects.create(name='Dr. Kumar')

        self.first = register(self.reception, self.branch, self.doctor, visit_date=today() - timedelta(days=5),
                              paid_now=Decimal('200'), payment_mode='CASH').visit
        self.first.referral = self.ref
        self.first.save()
        self.second = register(self.reception, self.branch, self.doctor).visit
        register(self.reception, self.branch, self.colleague, name='Arun K', phone='9123456780')

        VisitNote.objects.create(visit=self.first, diagnosis='Anaemia', investigation='CBC', remarks='Review 2w')
        rx = Prescription.objects.create(visit=self.first)
        PrescriptionItem.objects.create(prescription=rx, medicine_name='Iron')
        PrescriptionItem.objects.create(prescription=rx, medicine_name='Folic Acid')
        rx2 = Prescription.objects.create(visit=self.second)
        PrescriptionItem.objects.create(prescription=rx2, medicine_name='Folic Acid')
        VisitOrder.objects.create(visit=self.first, service=service(self.branch, Service.SCAN), notes='TVS')
        VisitOrder.objects.create(visit=self.second, service=service(self.branch, Service.CTG),
                                  status=VisitOrder.CANCELLED)

    def test_doctor_sees_own_totals(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.get('/api/doctor/analytics')
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual(r.data['doctorId'], self.doctor.id)
        self.assertEqual(r.data['totals'], {
            'totalPatients': 2,
            'repeatPatients': 1,
            'scanOrdered': 1,
            'ctgOrdered': 0,
            'papOrdered': 0,
        })
        self.assertEqual(r.data['feeBreakdown'], [{'feeType': 'CONSULTATION', 'totalAmount': Decimal('200.00')}])
        self.assertEqual({row['referralName'] for row in r.data['topReferrals']}, {'Dr. Kumar', '—'})
        self.assertEqual(r.data['medicineBreakdown'], [
            {'medicineName': 'Folic Acid', 'cnt': 2},
            {'medicineName': 'Iron', 'cnt': 1},
        ])

    def test_doctor_cannot_look_at_colleague(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.get('/api/doctor/analytics', {'doctorId': self.colleague.id})
        self.assertEqual(r.data['doctorId'], self.doctor.id)
        self.assertEqual(r.data['totals']['totalPatients'], 2)

    def test_admin_picks_doctor_or_sees_branch(self):
        self.client.force_authenticate(self.admin)
        r = self.client.get('/api/doctor/analytics', {'doctorId': self.colleague.id})
        self.assertEqual(r.data['totals']['totalPatients'], 1)
        r = self.client.get('/api/doctor/analytics')
        self.assertIsNone(r.data['doctorId'])
        self.assertEqual(r.data['totals']['totalPatients'], 3)

    def test_range_validation(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.get('/api/doctor/analytics', {'start': '2024-02-30'})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid start date.')
        r = self.client.get('/api/doctor/analytics', {'start': today().isoformat(), 'end': '2024-01-01'})
        self.assertEqual(r.status_code, 400)
        r = self.client.get('/api/doctor/analytics', {'start': today().isoformat(), 'end': today().isoformat()})
        self.assertEqual(r.data['totals']['totalPatients'], 1)

    def test_visit_report_rows(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.get('/api/doctor/reports')
        self.assertEqual(r.status_code, 200, r.data)
        rows = r.data['rows']
        self.assertEqual([row['visitId'] for row in rows], [self.second.id, self.first.id])
        self.assertEqual(rows[0]['referredBy'], '—')
        self.assertEqual(rows[0]['treatment'], 'Folic Acid')
        self.assertEqual(rows[0]['ctgDetails'], '')
        older = rows[1]
        self.assertEqual(older['referredBy'], 'Dr. Kumar')
        self.assertEqual(older['diagnosis'], 'Anaemia')
        self.assertEqual(older['scanDetails'], 'TVS')
        self.assertEqual(older['treatment'], 'Folic Acid, Iron')
        self.assertEqual(older['remarks'], 'Review 2w')

    def test_visit_report_filters(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.get('/api/doctor/reports', {'referralId': self.ref.id})
        self.assertEqual([row['visitId'] for row in r.data['rows']], [self.first.id])
        day = today().isoformat()
        r = self.client.get('/api/doctor/reports', {'start': day, 'end': day})
        self.assertEqual([row['visitId'] for row in r.data['rows']], [self.second.id])
        r = self.client.get('/api/doctor/reports', {'end': 'soon'})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid end date.')

    def test_reception_has_no_doctor_reports(self):
        self.client.force_authenticate(self.reception)
        self.assertEqual(self.client.get('/api/doctor/analytics').status_code, 403)
        self.assertEqual(self.client.get('/api/doctor/reports').status_code, 403)


class VisitSummaryTests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.visit = register(self.reception, self.branch, self.doctor,
                              paid_now=Decimal('200'), payment_mode='CASH').visit
        self.refund = record_payment(visit=self.visit, service=service(self.branch), amount=Decimal('50.00'),
                                     mode=PaymentMode.objects.get(code='CASH'), user=self.reception,
                                     note='overcharged', direction=Payment.REFUND)
        self.url = f'/api/visits/{self.visit.id}/summary'

    def test_reception_sees_payment_position_and_refunds(self):
        self.client.force_authenticate(self.reception)
        r = self.client.get(self.url)
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual(r.data['visit']['patientCode'], self.visit.patient.patient_code)
        self.assertEqual(r.data['visit']['doctorName'], 'Dr. Meena')
        line, = r.data['paymentLines']
        self.assertEqual(line['serviceCode'], Service.CONSULTATION)
        self.assertEqual(line['netAmount'], Decimal('500.00'))
        self.assertEqual(line['paidAmount'], Decimal('200.00'))
        self.assertEqual(line['refundedAmount'], Decimal('50.00'))
        self.assertEqual(line['netPaidAmount'], Decimal('150.00'))
        self.assertEqual(line['pendingAmount'], Decimal('350.00'))
        self.assertEqual(line['refundDueAmount'], Decimal('0.00'))
        self.assertEqual(line['payStatus'], Payment.PENDING)
        refund, = r.data['refunds']
        self.assertEqual(refund['paymentId'], self.refund.id)
        self.assertEqual(refund['amount'], Decimal('50.00'))
        self.assertEqual(refund['paymentMode'], 'CASH')
        self.assertEqual(refund['note'], 'overcharged')

    def test_fully_discounted_line_is_waived(self):
        visit = register(self.reception, self.branch, self.doctor, name='Arun K', discount=Decimal('500')).visit
        self.client.force_authenticate(self.reception)
        r = self.client.get(f'/api/visits/{visit.id}/summary')
        self.assertEqual(r.data['paymentLines'][0]['payStatus'], Payment.WAIVED)

    def test_doctor_sees_only_own_visits(self):
        self.client.force_authenticate(self.doctor_user)
        self.assertEqual(self.client.get(self.url).status_code, 200)
        colleague = make_user(self.branch, 'ravi@clinic.test', 'DOCTOR')
        make_doctor(self.branch, 'Dr. Ravi', user=colleague)
        self.client.force_authenticate(colleague)
        r = self.client.get(self.url)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.data['error']['message'], 'Forbidden.')

    def test_other_branch_and_missing_visit(self):
        other = make_branch('OTHER')
        self.client.force_authenticate(make_user(other, 'desk2@clinic.test', 'RECEPTION'))
        self.assertEqual(self.client.get(self.url).status_code, 403)
        r = self.client.get('/api/visits/999999/summary')
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.data['error']['message'], 'Visit not found.')
