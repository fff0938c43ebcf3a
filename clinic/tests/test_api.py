"""
Integration tests for the front desk API: registration, repeat visits
and queue moves.

These tests use Django REST Framework's APIClient within the
APITestCase base class and authenticate with ``force_authenticate``.

To run the tests:

```
pytest -q clinic/tests
```
"""
from datetime import timedelta
from decimal import Decimal

from rest_framework.test import APITestCase

from clinic.models import Patient, PatientCounter, Payment, PaymentAllocation, QueueEntry, ReferralPerson, Visit, VisitCharge
from clinic.services.dates import today
from clinic.tests.builders import make_branch, make_doctor, make_user, register, service

REGISTER_URL = '/api/reception/register'


class RegistrationAPITests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('SMNH-MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor = make_doctor(self.branch)
        self.consultation = service(self.branch)
        self.client.force_authenticate(self.reception)

    def payload(self, **overrides):
        data = {
            'visitDate': today().isoformat(),
            'name': 'Lakshmi R',
            'phone': '98765 43210',
            'doctorId': self.doctor.id,
            'serviceId': self.consultation.id,
            'discountAmount': '100',
            'paidNowAmount': '250',
            'paymentMode': 'CASH',
        }
        data.update(overrides)
        return data

    def test_register_today_creates_visit_charge_queue_and_payment(self):
        r = self.client.post(REGISTER_URL, self.payload(), format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertTrue(r.data['ok'])
        self.assertTrue(r.data['queued'])
        d = today()
        self.assertEqual(r.data['patientCode'], f'OP_SMNH-MCC_{d.year:04d}{d.month:02d}1')

        row = r.data['queueRow']
        self.assertEqual(row['token'], 1)
        self.assertEqual(row['status'], QueueEntry.WAITING)
        self.assertEqual(row['phone'], '9876543210')

        visit = Visit.objects.get(id=r.data['visitId'])
        self.assertEqual(visit.status, Visit.REGISTERED)
        charge = VisitCharge.objects.get(visit=visit)
        self.assertEqual(charge.gross_amount, Decimal('500.00'))
        self.assertEqual(charge.discount_amount, Decimal('100.00'))
        self.assertEqual(charge.net_amount, Decimal('400.00'))

        payment = Payment.objects.get(visit=visit)
        self.assertEqual(payment.amount, Decimal('250.00'))
        self.assertEqual(payment.pay_status, Payment.ACCEPTED)
        alloc = PaymentAllocation.objects.get(payment=payment)
        self.assertEqual(alloc.amount, Decimal('250.00'))

    def test_amounts_are_clamped_to_gross_and_net(self):
        r = self.client.post(REGISTER_URL, self.payload(discountAmount='900', paidNowAmount='50'), format='json')
        self.assertEqual(r.status_code, 201, r.data)
        charge = VisitCharge.objects.get(visit_id=r.data['visitId'])
        self.assertEqual(charge.discount_amount, Decimal('500.00'))
        self.assertEqual(charge.net_amount, Decimal('0.00'))
        # nothing left to pay, so no payment row
        self.assertFalse(Payment.objects.filter(visit_id=r.data['visitId']).exists())

    def test_sequence_and_tokens_increment(self):
        first = self.client.post(REGISTER_URL, self.payload(), format='json')
        second = self.client.post(REGISTER_URL, self.payload(name='Arun K'), format='json')
        self.assertEqual(second.status_code, 201)
        self.assertTrue(second.data['patientCode'].endswith('2'))
        self.assertEqual(first.data['queueRow']['token'], 1)
        self.assertEqual(second.data['queueRow']['token'], 2)
        self.assertEqual(PatientCounter.objects.get(branch=self.branch).next_seq, 3)

    def test_past_visit_is_not_queued(self):
        r = self.client.post(REGISTER_URL, self.payload(visitDate=(today() - timedelta(days=3)).isoformat()),
                             format='json')
        self.assertEqual(r.status_code, 201)
        self.assertFalse(r.data['queued'])
        self.assertIsNone(r.data['queueRow'])
        self.assertFalse(QueueEntry.objects.filter(visit_id=r.data['visitId']).exists())

    def test_validation_messages(self):
        cases = [
            ({'visitDate': ''}, 'Visit date is required.'),
            ({'visitDate': '2024-02-30'}, 'Visit date must be in YYYY-MM-DD format.'),
            ({'visitDate': (today() + timedelta(days=1)).isoformat()}, 'Visit date cannot be in the future.'),
            ({'name': '   '}, 'Name is required.'),
            ({'phone': '12345'}, 'Phone must be a valid 10-digit number.'),
            ({'doctorId': None}, 'Doctor is required.'),
            ({'serviceId': None}, 'Service is required.'),
            ({'paymentMode': ''}, 'Payment mode is required when collecting paid-now amount.'),
            ({'paymentMode': 'BITCOIN'}, 'Invalid payment mode.'),
            ({'referralId': 'missing'}, 'Invalid referral.'),
        ]
        for overrides, message in cases:
            r = self.client.post(REGISTER_URL, self.payload(**overrides), format='json')
            self.assertEqual(r.status_code, 400, (overrides, r.data))
            self.assertEqual(r.data['error']['message'], message)
        self.assertEqual(Patient.objects.count(), 0)

    def test_doctor_from_another_branch_is_rejected(self):
        other = make_branch('OTHER')
        stranger = make_doctor(other, 'Dr. Far')
        r = self.client.post(REGISTER_URL, self.payload(doctorId=stranger.id), format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid doctor.')

    def test_registration_keeps_referral(self):
        ref = ReferralPerson.objects.create(name='Dr. Kumar')
        r = self.client.post(REGISTER_URL, self.payload(referralId=ref.id), format='json')
        self.assertEqual(r.status_code, 201)
        self.assertEqual(Visit.objects.get(id=r.data['visitId']).referral_id, ref.id)

    def test_pharmacy_user_cannot_register(self):
        self.client.force_authenticate(make_user(self.branch, 'pharma@clinic.test', 'PHARMA_IN_CHARGE'))
        r = self.client.post(REGISTER_URL, self.payload(), format='json')
        self.assertEqual(r.status_code, 403)
        self.assertFalse(r.data['ok'])

    def test_taken_patient_code_is_a_conflict_not_a_crash(self):
        d = today()
        Patient.objects.create(patient_code=f'OP_SMNH-MCC_{d.year:04d}{d.month:02d}1', full_name='Imported')
        r = self.client.post(REGISTER_URL, self.payload(), format='json')
        self.assertEqual(r.status_code, 409, r.data)
        self.assertEqual(r.data['error']['code'], 'conflict')
        self.assertFalse(Visit.objects.exists())


class NewVisitAPITests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.admin = make_user(self.branch, 'admin@clinic.test', 'ADMIN')
        self.ref = ReferralPerson.objects.create(name='Dr. Kumar')
        past = register(self.reception, self.branch, self.doctor, visit_date=today() - timedelta(days=10))
        past.visit.referral = self.ref
        past.visit.save()
        self.patient = past.patient
        self.url = f'/api/patients/{self.patient.patient_code}/new-visit'

    def test_doctor_opens_visit_for_self_and_reuses_referral(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.post(self.url, {}, format='json')
        self.assertEqual(r.status_code, 201, r.data)
        self.assertEqual(r.data['token'], 1)
        visit = Visit.objects.get(id=r.data['visitId'])
        self.assertEqual(visit.doctor_id, self.doctor.id)
        self.assertEqual(visit.visit_date, today())
        self.assertEqual(visit.referral_id, self.ref.id)
        self.assertEqual(VisitCharge.objects.get(visit=visit).net_amount, Decimal('500.00'))

    def test_admin_must_name_a_doctor(self):
        self.client.force_authenticate(self.admin)
        r = self.client.post(self.url, {}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'doctorId is required.')
        r = self.client.post(self.url, {'doctorId': self.doctor.id}, format='json')
        self.assertEqual(r.status_code, 201)

    def test_unknown_patient_is_404(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.post('/api/patients/OP_NOPE_2020011/new-visit', {}, format='json')
        self.assertEqual(r.status_code, 404)

    def test_unlinked_doctor_login_is_rejected(self):
        self.client.force_authenticate(make_user(self.branch, 'locum@clinic.test', 'DOCTOR'))
        r = self.client.post(self.url, {}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Doctor account not linked to doctor profile.')

    def test_unknown_referral_is_rejected(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.post(self.url, {'referralId': 'missing'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid referral.')
        self.assertEqual(Visit.objects.filter(patient=self.patient).count(), 1)


class QueueAPITests(APITestCase):
    def setUp(self) -> None:
        self.branch = make_branch('MCC')
        self.reception = make_user(self.branch, 'desk@clinic.test', 'RECEPTION')
        self.doctor_user = make_user(self.branch, 'meena@clinic.test', 'DOCTOR')
        self.doctor = make_doctor(self.branch, user=self.doctor_user)
        self.result = register(self.reception, self.branch, self.doctor)
        self.entry = self.result.queue_entry

    def test_reception_moves_entry(self):
        self.client.force_authenticate(self.reception)
        r = self.client.post('/api/reception/queue/status',
                             {'queueEntryId': self.entry.id, 'status': 'in_room'}, format='json')
        self.assertEqual(r.status_code, 200, r.data)
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.status, QueueEntry.IN_ROOM)

    def test_reception_cannot_set_done(self):
        self.client.force_authenticate(self.reception)
        r = self.client.post('/api/reception/queue/status',
                             {'queueEntryId': self.entry.id, 'status': 'DONE'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['message'], 'Invalid status.')

    def test_entry_of_other_branch_is_not_found(self):
        other = make_branch('OTHER')
        self.client.force_authenticate(make_user(other, 'desk2@clinic.test', 'RECEPTION'))
        r = self.client.post('/api/reception/queue/status',
                             {'queueEntryId': self.entry.id, 'status': 'NEXT'}, format='json')
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.data['error']['message'], 'Queue entry not found.')

    def test_doctor_marks_own_visit_done(self):
        self.client.force_authenticate(self.doctor_user)
        r = self.client.post(f'/api/doctor/visits/{self.result.visit.id}/done', {}, format='json')
        self.assertEqual(r.status_code, 200, r.data)
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.status, QueueEntry.DONE)
        self.assertEqual(Visit.objects.get(id=self.result.visit.id).status, Visit.COMPLETED)

    def test_doctor_cannot_close_colleagues_visit(self):
        colleague = make_user(self.branch, 'ravi@clinic.test', 'DOCTOR')
        make_doctor(self.branch, 'Dr. Ravi', user=colleague)
        self.client.force_authenticate(colleague)
        r = self.client.post(f'/api/doctor/visits/{self.result.visit.id}/done', {}, format='json')
        self.assertEqual(r.status_code, 403)

    def test_reception_cannot_use_doctor_endpoint(self):
        self.client.force_authenticate(self.reception)
        r = self.client.post(f'/api/doctor/visits/{self.result.visit.id}/done', {}, format='json')
        self.assertEqual(r.status_code, 403)
