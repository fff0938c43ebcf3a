"""
Doctor consultation endpoints.

A doctor only sees visits booked under the doctor profile linked to their
login; admins can open any visit in their branch.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsClinician
from ..serializers.clinical import ConsultationSaveSerializer, VisitOrderCreateSerializer
from ..services.consultation import create_visit_order, get_consultation, save_consultation
from ..services.scope import get_scope


@api_view(['GET', 'POST'])
@permission_classes([IsClinician])
def consultation(request, visit_id: int):
    scope = get_scope(request.user)
    if request.method == 'GET':
        return Response({'ok': True, **get_consultation(request.user, scope, visit_id)})

    s = ConsultationSaveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rx = save_consultation(request.user, scope, visit_id, s.validated_data)
    return Response({'ok': True, 'visitId': rx.visit_id, 'prescriptionId': rx.id})


@api_view(['POST'])
@permission_classes([IsClinician])
def visit_orders(request, visit_id: int):
    scope = get_scope(request.user)
    s = VisitOrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = create_visit_order(
        request.user, scope, visit_id,
        service_code=s.validated_data.get('serviceCode') or 'SCAN',
        notes=s.validated_data.get('notes') or '',
    )
    return Response({'ok': True, 'orderId': order.id}, status=201)
