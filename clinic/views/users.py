"""
Staff account administration.

``POST /api/admin/users`` creates a login (and a doctor profile for DOCTOR
logins); ``GET`` lists the organization's users, or only the caller's
branch for a plain ADMIN.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsAdminRole
from ..serializers.admin import UserCreateSerializer
from ..services.users import create_user, list_users, serialize_user


@api_view(['GET', 'POST'])
@permission_classes([IsAdminRole])
def admin_users(request):
    if request.method == 'GET':
        return Response({'ok': True, 'rows': list_users(request.user)})

    s = UserCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    user, doctor = create_user(
        request.user,
        email=vd.get('email') or '',
        password=vd.get('password') or '',
        full_name=vd.get('fullName') or '',
        roles=vd['roles'],
        branch_id=vd.get('branchId'),
        phone=vd.get('phone') or '',
    )
    return Response({
        'ok': True,
        'user': serialize_user(user),
        'doctorId': doctor.id if doctor else None,
    }, status=201)
