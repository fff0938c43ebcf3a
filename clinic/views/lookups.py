"""
Lookup lists used by the desk forms.

Referrals, medicines and doctors are searchable and can be created on the
fly by typing a new name; services and payment modes are read from cache.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import Role
from ..permissions import CanManageMedicines, CanManageReferrals, CanRegister
from ..serializers.admin import DoctorCreateSerializer, NameSerializer
from ..services.lookups import (
    get_or_create_branch_doctor,
    get_or_create_medicine,
    get_or_create_referral,
    list_branch_doctors,
    list_payment_modes,
    list_services_with_rates,
    search_medicines,
    search_referrals,
)
from ..services.scope import get_scope


@api_view(['GET', 'POST'])
@permission_classes([CanManageReferrals])
def referrals(request):
    if request.method == 'GET':
        return Response({'ok': True, 'rows': search_referrals(request.query_params.get('q', ''))})
    s = NameSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ref, created = get_or_create_referral(s.validated_data['name'])
    return Response({'ok': True, 'id': ref.id, 'name': ref.name, 'created': created},
                    status=201 if created else 200)


@api_view(['GET', 'POST'])
@permission_classes([CanManageMedicines])
def medicines(request):
    if request.method == 'GET':
        return Response({'ok': True, 'rows': search_medicines(request.query_params.get('q', ''))})
    s = NameSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    med, created = get_or_create_medicine(s.validated_data['name'])
    return Response({'ok': True, 'id': med.id, 'name': med.name, 'created': created},
                    status=201 if created else 200)


@api_view(['GET', 'POST'])
@permission_classes([CanRegister])
def doctors(request):
    """Branch doctors; only the reception desk may add one by name."""
    scope = get_scope(request.user)
    if request.method == 'GET':
        return Response({'ok': True, 'rows': list_branch_doctors(scope)})

    if not request.user.has_any_role(Role.RECEPTION):
        raise PermissionDenied('Only RECEPTION can add doctors.')
    s = DoctorCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    doctor, created = get_or_create_branch_doctor(
        scope, vd['fullName'], vd.get('phone') or '', vd.get('specialization') or ''
    )
    return Response({'ok': True, 'id': doctor.id, 'fullName': doctor.full_name, 'created': created},
                    status=201 if created else 200)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def services(request):
    scope = get_scope(request.user)
    return Response({'ok': True, 'rows': list_services_with_rates(scope)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def payment_modes(request):
    return Response({'ok': True, 'rows': list_payment_modes()})
