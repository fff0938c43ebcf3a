"""
Patient and visit views.

Search and detail endpoints are shared by the front desk and doctors;
visit corrections are front desk only.  Every query is limited to the
caller's organization and branch.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import CanRegister, IsClinician, IsFrontDesk
from ..serializers.clinical import DoctorPatientsQuerySerializer
from ..serializers.reception import PatientSearchSerializer, VisitEditSerializer
from ..services.patients import (
    doctor_patients, edit_visit, patient_detail, search_patients, visit_detail, visit_header, visit_summary,
)
from ..services.scope import get_scope


@api_view(['GET'])
@permission_classes([CanRegister])
def patient_search(request):
    scope = get_scope(request.user)
    q = PatientSearchSerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response({'ok': True, 'rows': search_patients(scope, q.validated_data.get('q') or '')})


@api_view(['GET'])
@permission_classes([CanRegister])
def patient_by_code(request, patient_code):
    scope = get_scope(request.user)
    return Response({'ok': True, **patient_detail(scope, patient_code)})


@api_view(['GET'])
@permission_classes([CanRegister])
def visit_view(request, visit_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, **visit_detail(scope, visit_id)})


@api_view(['PATCH'])
@permission_classes([IsFrontDesk])
def visit_edit(request, visit_id: int):
    scope = get_scope(request.user)
    s = VisitEditSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    visit = edit_visit(
        request.user, scope, visit_id,
        patient_name=vd.get('patientName'),
        phone=vd.get('phone'),
        referral_name=vd.get('referralName'),
        referral_id=(vd.get('referralId') or '').strip() or None,
        doctor_id=vd.get('doctorId'),
    )
    return Response({'ok': True, 'visit': visit_header(visit)})


@api_view(['GET'])
@permission_classes([IsClinician])
def doctor_patient_list(request):
    """Paginated list of patients the doctor has seen."""
    scope = get_scope(request.user)
    q = DoctorPatientsQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    data = doctor_patients(
        request.user, scope,
        q=vd.get('q') or vd.get('search') or '',
        page=vd.get('page') or 1,
        page_size=vd.get('pageSize') or 15,
        doctor_id=vd.get('doctorId'),
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([CanRegister])
def visit_summary_view(request, visit_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, **visit_summary(request.user, scope, visit_id)})
