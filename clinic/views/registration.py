"""
Front desk registration endpoints.

``register`` creates the patient, the visit, its charge and (for today's
visits) a queue token in one go.  ``new_visit`` reopens an existing
patient for today under a doctor.  The two walk-in endpoints let a
doctor open an uncharged visit from the consulting room.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import CanRegister, IsClinician
from ..serializers.clinical import WalkInRegisterSerializer, WalkInSerializer
from ..serializers.reception import NewVisitSerializer, RegisterSerializer
from ..services.registration import open_new_visit, register_patient, register_walkin
from ..services.scope import get_scope


@api_view(['POST'])
@permission_classes([CanRegister])
def register(request):
    scope = get_scope(request.user)
    s = RegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data

    result = register_patient(
        request.user, scope,
        visit_date=vd['visitDate'],
        name=vd['name'],
        phone=vd['phone'],
        doctor_id=vd['doctorId'],
        service_id=vd['serviceId'],
        referral_id=vd['referralId'],
        discount=vd['discountAmount'],
        paid_now=vd['paidNowAmount'],
        payment_mode=vd['paymentMode'],
        remarks=vd['remarks'],
    )

    entry = result.queue_entry
    queue_row = None
    if entry is not None:
        queue_row = {
            'token': entry.token_no,
            'patientId': result.patient.id,
            'visitId': result.visit.id,
            'name': result.patient.full_name,
            'phone': result.patient.phone,
            'status': entry.status,
        }
    return Response({
        'ok': True,
        'visitId': result.visit.id,
        'patientCode': result.patient.patient_code,
        'queued': entry is not None,
        'queueRow': queue_row,
    }, status=201)

# ScopedRateThrottle reads throttle_scope off the wrapped APIView class
register.cls.throttle_scope = 'registration'


@api_view(['POST'])
@permission_classes([IsClinician])
def new_visit(request, patient_code):
    scope = get_scope(request.user)
    s = NewVisitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    visit, entry = open_new_visit(
        request.user, scope, patient_code,
        doctor_id=vd.get('doctorId'),
        referral_id=(vd.get('referralId') or '').strip() or None,
        service_code=(vd.get('serviceCode') or 'CONSULTATION').strip().upper(),
    )
    return Response({'ok': True, 'visitId': visit.id, 'token': entry.token_no}, status=201)


@api_view(['POST'])
@permission_classes([IsClinician])
def walkin(request):
    """Doctor-side walk-in for an existing patient code or a new patient."""
    scope = get_scope(request.user)
    s = WalkInSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = register_walkin(request.user, scope, **s.validated_data)
    return Response({'ok': True, **data}, status=201)


@api_view(['POST'])
@permission_classes([IsClinician])
def walkin_register(request):
    scope = get_scope(request.user)
    s = WalkInRegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = register_walkin(request.user, scope, **s.validated_data)
    return Response({'ok': True, **data}, status=201)
