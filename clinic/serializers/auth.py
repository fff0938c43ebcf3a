from rest_framework import serializers


class LoginSerializer(serializers.Serializer):
    email = serializers.CharField(required=False, allow_blank=True)
    username = serializers.CharField(required=False, allow_blank=True)
    password = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)

    def validate(self, attrs):
        email = (attrs.get('email') or attrs.get('username') or '').strip().lower()
        if not email or not attrs.get('password'):
            raise serializers.ValidationError('Email and password are required.')
        attrs['email'] = email
        return attrs


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)
