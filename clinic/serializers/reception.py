"""
Input serializers for the front desk: registration, queue moves,
payments and visit corrections.
"""
from decimal import Decimal

import bleach
from rest_framework import serializers

from clinic.models import QueueEntry
from clinic.services.dates import validate_visit_date
from clinic.services.registration import clean_phone

ZERO = Decimal('0')


def clean_text(value) -> str:
    return bleach.clean(str(value or ''), tags=[], strip=True).strip()


class RegisterSerializer(serializers.Serializer):
    visitDate = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    referralId = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=36)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    serviceId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    discountAmount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False,
                                              allow_null=True, min_value=ZERO)
    paidNowAmount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False,
                                             allow_null=True, min_value=ZERO)
    paymentMode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    remarks = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)

    def validate(self, attrs):
        attrs['visitDate'] = validate_visit_date(attrs.get('visitDate'))
        name = clean_text(attrs.get('name'))
        if not name:
            raise serializers.ValidationError('Name is required.')
        attrs['name'] = name
        attrs['phone'] = clean_phone(attrs.get('phone'))
        if not attrs.get('doctorId'):
            raise serializers.ValidationError('Doctor is required.')
        if not attrs.get('serviceId'):
            raise serializers.ValidationError('Service is required.')
        attrs['referralId'] = (attrs.get('referralId') or '').strip() or None
        attrs['discountAmount'] = attrs.get('discountAmount') or ZERO
        attrs['paidNowAmount'] = attrs.get('paidNowAmount') or ZERO
        attrs['paymentMode'] = (attrs.get('paymentMode') or '').strip()
        attrs['remarks'] = clean_text(attrs.get('remarks')) or None
        return attrs


class NewVisitSerializer(serializers.Serializer):
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    referralId = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=36)
    serviceCode = serializers.CharField(required=False, allow_blank=True, max_length=32, default='CONSULTATION')


class QueueStatusSerializer(serializers.Serializer):
    queueEntryId = serializers.IntegerField(min_value=1)
    status = serializers.CharField(max_length=16)

    def validate_status(self, v):
        v = (v or '').strip().upper()
        if v not in QueueEntry.RECEPTION_STATUSES:
            raise serializers.ValidationError('Invalid status.')
        return v


class _PaymentSerializer(serializers.Serializer):
    visitId = serializers.IntegerField(required=False, allow_null=True)
    amount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    paymentMode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)
    serviceCode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)

    amount_message = 'Amount must be greater than zero.'

    def validate(self, attrs):
        if not attrs.get('visitId') or attrs['visitId'] <= 0:
            raise serializers.ValidationError('visitId is required.')
        amount = attrs.get('amount')
        if amount is None or amount <= 0:
            raise serializers.ValidationError(self.amount_message)
        mode = (attrs.get('paymentMode') or '').strip()
        if not mode:
            raise serializers.ValidationError('Payment mode is required.')
        attrs['paymentMode'] = mode
        attrs['note'] = clean_text(attrs.get('note')) or None
        attrs['serviceCode'] = (attrs.get('serviceCode') or 'CONSULTATION').strip().upper()
        return attrs


class CollectPaymentSerializer(_PaymentSerializer):
    pass


class RefundPaymentSerializer(_PaymentSerializer):
    paymentModeCode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)

    amount_message = 'Refund amount must be greater than zero.'

    def validate(self, attrs):
        if not (attrs.get('paymentMode') or '').strip():
            attrs['paymentMode'] = attrs.get('paymentModeCode') or ''
        attrs = super().validate(attrs)
        attrs['paymentMode'] = attrs['paymentMode'].upper()
        return attrs


class ChargeAdjustSerializer(serializers.Serializer):
    netAmount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)
    authorizedByDoctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    refundModeCode = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)

    def validate(self, attrs):
        net = attrs.get('netAmount')
        if net is None or net < 0:
            raise serializers.ValidationError('Invalid netAmount.')
        reason = clean_text(attrs.get('reason'))
        if not reason:
            raise serializers.ValidationError('Reason is required.')
        attrs['reason'] = reason
        attrs['refundModeCode'] = (attrs.get('refundModeCode') or '').strip()
        return attrs


class VisitEditSerializer(serializers.Serializer):
    patientName = serializers.CharField(required=False, allow_blank=True, max_length=500)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    referralName = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    referralId = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=36)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate_patientName(self, v):
        return clean_text(v)


class PatientSearchSerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, max_length=64)
