from rest_framework import serializers

from clinic.serializers.reception import clean_text
from clinic.services.consultation import ORDER_CODE_ALIASES
from clinic.services.registration import clean_phone


class OrderFlagSerializer(serializers.Serializer):
    needed = serializers.BooleanField(required=False, default=False)
    details = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')


class OrdersSerializer(serializers.Serializer):
    scan = OrderFlagSerializer(required=False)
    pap = OrderFlagSerializer(required=False)
    ctg = OrderFlagSerializer(required=False)
    lab = OrderFlagSerializer(required=False)


class PrescriptionItemSerializer(serializers.Serializer):
    medicineName = serializers.CharField(required=False, allow_blank=True, max_length=255, default='')
    dosage = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=100)
    morning = serializers.BooleanField(required=False, default=False)
    afternoon = serializers.BooleanField(required=False, default=False)
    night = serializers.BooleanField(required=False, default=False)
    beforeFood = serializers.BooleanField(required=False, default=False)
    durationDays = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    instructions = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)
    sortOrder = serializers.IntegerField(required=False, default=0)


class PrescriptionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    items = PrescriptionItemSerializer(many=True, required=False)


class ConsultationSaveSerializer(serializers.Serializer):
    diagnosis = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    investigation = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    treatment = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    remarks = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    orders = OrdersSerializer(required=False)
    prescription = PrescriptionSerializer(required=False)
    discountNotes = serializers.DictField(child=serializers.CharField(allow_blank=True, allow_null=True),
                                          required=False)

    def validate_discountNotes(self, v):
        out = {}
        for k, val in v.items():
            code = str(k).strip().upper()
            out[ORDER_CODE_ALIASES.get(code, code)] = val or ''
        return out


class VisitOrderCreateSerializer(serializers.Serializer):
    serviceCode = serializers.CharField(required=False, allow_blank=True, max_length=32, default='SCAN')
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')


class DoctorPatientsQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, max_length=64)
    search = serializers.CharField(required=False, allow_blank=True, max_length=64)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    pageSize = serializers.IntegerField(required=False, default=15)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate_pageSize(self, v):
        return min(50, max(5, v))


class DoctorDashboardQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, max_length=64)
    search = serializers.CharField(required=False, allow_blank=True, max_length=64)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class PharmaOrdersQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True, max_length=16)
    today = serializers.CharField(required=False, allow_blank=True, max_length=4)
    q = serializers.CharField(required=False, allow_blank=True, max_length=64)

    def validate_today(self, v):
        return (v or '1').strip() != '0'


class StatusSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=16)


class ScanOrdersQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True, max_length=16)
    date = serializers.CharField(required=False, allow_blank=True, max_length=10)


class NewPatientSerializer(serializers.Serializer):
    fullName = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)


class WalkInSerializer(serializers.Serializer):
    """Either ``patientCode`` (with optional name/phone corrections) or ``newPatient``."""
    visitDate = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    patientCode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=64)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    newPatient = NewPatientSerializer(required=False)
    referralId = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=36)

    def validate(self, attrs):
        code = (attrs.get('patientCode') or '').strip()
        if code:
            name = clean_text(attrs.get('name'))
            raw_phone = attrs.get('phone')
        elif 'newPatient' in attrs:
            name = clean_text(attrs['newPatient'].get('fullName'))
            raw_phone = attrs['newPatient'].get('phone')
            if not name:
                raise serializers.ValidationError('Patient name is required.')
        else:
            raise serializers.ValidationError('patientCode is required.')
        return {
            'visit_date': (attrs.get('visitDate') or '').strip() or None,
            'patient_code': code or None,
            'name': name,
            'phone': clean_phone(raw_phone) if raw_phone is not None else None,
            'referral_id': (attrs.get('referralId') or '').strip() or None,
        }


class WalkInRegisterSerializer(serializers.Serializer):
    patientDbId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    referralId = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=36)

    def validate(self, attrs):
        name = clean_text(attrs.get('name'))
        if not name:
            raise serializers.ValidationError('Name is required.')
        return {
            'patient_id': attrs.get('patientDbId'),
            'name': name,
            'phone': clean_phone(attrs.get('phone')),
            'referral_id': (attrs.get('referralId') or '').strip() or None,
        }


class DoctorRangeQuerySerializer(serializers.Serializer):
    """Shared by doctor analytics and the doctor visit report."""
    start = serializers.CharField(required=False, allow_blank=True, max_length=10)
    end = serializers.CharField(required=False, allow_blank=True, max_length=10)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    referralId = serializers.CharField(required=False, allow_blank=True, max_length=36)
