import bleach
from rest_framework import serializers


class NameSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), tags=[], strip=True)
        if not v:
            raise serializers.ValidationError('Name is required.')
        return v


class DoctorCreateSerializer(serializers.Serializer):
    fullName = serializers.CharField(max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=20)
    specialization = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)


class UserCreateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    fullName = serializers.CharField(required=False, allow_blank=True, max_length=255)
    roles = serializers.ListField(child=serializers.CharField(max_length=32), required=False)
    role = serializers.CharField(required=False, max_length=32)
    branchId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=20)

    def validate_fullName(self, v):
        return bleach.clean(v.strip(), tags=[], strip=True)

    def validate(self, attrs):
        roles = list(attrs.get('roles') or [])
        if attrs.get('role'):
            roles.append(attrs['role'])
        attrs['roles'] = roles
        return attrs


class ReportQuerySerializer(serializers.Serializer):
    """Loose query-string holder; the report services validate values."""
    date = serializers.CharField(required=False, allow_blank=True)
    start = serializers.CharField(required=False, allow_blank=True)
    end = serializers.CharField(required=False, allow_blank=True)
    asOf = serializers.CharField(required=False, allow_blank=True)
    startDate = serializers.CharField(required=False, allow_blank=True)
    endDate = serializers.CharField(required=False, allow_blank=True)
    pendingType = serializers.CharField(required=False, allow_blank=True)
    ageBucket = serializers.CharField(required=False, allow_blank=True)
    doctorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    referralId = serializers.CharField(required=False, allow_blank=True, max_length=36)
    serviceCode = serializers.CharField(required=False, allow_blank=True, max_length=32)
    paymentMode = serializers.CharField(required=False, allow_blank=True, max_length=32)
    status = serializers.CharField(required=False, allow_blank=True, max_length=16)
    groupBy = serializers.CharField(required=False, allow_blank=True, max_length=16)
    group = serializers.CharField(required=False, allow_blank=True, max_length=8)
    # pharma report
    to = serializers.CharField(required=False, allow_blank=True)

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        # ``from`` is a keyword, so it cannot be declared as a field
        values['from'] = (data.get('from') or '').strip()
        return values


class NotificationsQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True, max_length=16)
    limit = serializers.CharField(required=False, allow_blank=True, max_length=8)
