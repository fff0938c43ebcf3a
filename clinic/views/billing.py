"""
Cashier endpoints: collect, refund, re-price the consultation and
fetch voucher data for a single payment row.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsFrontDesk
from ..serializers.reception import ChargeAdjustSerializer, CollectPaymentSerializer, RefundPaymentSerializer
from ..services.billing import (
    adjust_consultation_charge,
    collect_payment,
    get_consultation_charge,
    payment_voucher,
    refund_payment,
)
from ..services.scope import get_scope


@api_view(['POST'])
@permission_classes([IsFrontDesk])
def collect(request):
    scope = get_scope(request.user)
    s = CollectPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    data = collect_payment(
        request.user, scope,
        visit_id=vd['visitId'],
        amount=vd['amount'],
        payment_mode=vd['paymentMode'],
        note=vd['note'],
        service_code=vd['serviceCode'],
    )
    return Response({'ok': True, **data})


@api_view(['POST'])
@permission_classes([IsFrontDesk])
def refund(request):
    scope = get_scope(request.user)
    s = RefundPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    data = refund_payment(
        request.user, scope,
        visit_id=vd['visitId'],
        amount=vd['amount'],
        payment_mode=vd['paymentMode'],
        note=vd['note'],
        service_code=vd['serviceCode'],
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([IsFrontDesk])
def consultation_charge(request, visit_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, **get_consultation_charge(scope, visit_id)})


@api_view(['POST'])
@permission_classes([IsFrontDesk])
def consultation_charge_adjust(request, visit_id: int):
    """Set a new consultation net; any overpayment goes back as a refund."""
    scope = get_scope(request.user)
    s = ChargeAdjustSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    data = adjust_consultation_charge(
        request.user, scope, visit_id,
        net_amount=vd['netAmount'],
        reason=vd['reason'],
        authorized_by_doctor_id=vd.get('authorizedByDoctorId'),
        refund_mode_code=vd['refundModeCode'],
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([IsFrontDesk])
def voucher(request, payment_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, 'voucher': payment_voucher(scope, payment_id)})
