"""
Authentication views.

Login accepts an email and password and hands back both a legacy DRF
token and a JWT pair.  Kept apart from ``clinic.authentication`` so the
authentication class can be imported from settings without pulling the
views in.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from clinic.serializers.auth import LoginSerializer, LogoutSerializer
from clinic.services.audit import log_action
from clinic.services.scope import Scope, resolve_doctor_for_user
from clinic.services.users import serialize_user

logger = logging.getLogger(__name__)


def _client_ip(request) -> str | None:
    return request.META.get('REMOTE_ADDR')


# ---------------------------------------------------------------------
# Email/password login
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    email = s.validated_data['email']
    password = s.validated_data['password']

    user = authenticate(request, username=email, password=password)
    if user is None:
        logger.warning('login failed email=%s ip=%s', email, _client_ip(request))
        log_action(user=None, action='login', object_type='user', object_id=None,
                   detail={'result': 'fail', 'email': email, 'ip': _client_ip(request)})
        raise ValidationError('Invalid email or password.')

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': _client_ip(request)})

    # legacy token for clients still on "Authorization: Token"
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)

    return Response({
        'ok': True,
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
        'user': serialize_user(user),
    })

# ScopedRateThrottle reads throttle_scope off the wrapped APIView class
login_view.cls.throttle_scope = 'login'


# ---------------------------------------------------------------------
# JWT: refresh & logout
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from a refresh token."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise InvalidToken(e.args[0])
    data = dict(s.validated_data)
    data['jwt_access'] = data.pop('access')
    if 'refresh' in data:
        data['jwt_refresh'] = data.pop('refresh')
    return Response({'ok': True, **data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist one refresh token (or all of the caller's) and drop the legacy token."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            token = RefreshToken(refresh)
        except TokenError:
            raise ValidationError('Invalid refresh token.')
        owner = str(getattr(request.user, jwt_settings.USER_ID_FIELD))
        if str(token.get(jwt_settings.USER_ID_CLAIM)) != owner:
            logger.warning('logout with foreign refresh token user=%s', request.user.id)
            raise PermissionDenied('Refresh token belongs to another user.')
        token.blacklist()
        count = 1
    else:
        for outstanding in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=outstanding)
            count += int(created)
    Token.objects.filter(user=request.user).delete()
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'ok': True, 'blacklisted': count})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    user = request.user
    payload = serialize_user(user)
    doctor = None
    if user.organization_id and user.branch_id:
        doctor = resolve_doctor_for_user(user, Scope(user.organization_id, user.branch_id))
    payload['doctorId'] = doctor.id if doctor else None
    payload['branchName'] = user.branch.name if user.branch_id else None
    return Response({'ok': True, 'user': payload})
