from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsPharmacy
from ..serializers.clinical import PharmaOrdersQuerySerializer, StatusSerializer
from ..services.pharmacy import get_order, list_orders, normalize_status, set_order_status
from ..services.scope import get_scope


@api_view(['GET'])
@permission_classes([IsPharmacy])
def pharma_orders(request):
    """Pharmacy worklist; defaults to today's PENDING orders."""
    scope = get_scope(request.user)
    q = PharmaOrdersQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    status = normalize_status(q.validated_data.get('status'))
    rows = list_orders(
        scope,
        status=status,
        only_today=q.validated_data.get('today', True),
        q=q.validated_data.get('q') or '',
    )
    return Response({'ok': True, 'status': status, 'rows': rows})


@api_view(['GET'])
@permission_classes([IsPharmacy])
def pharma_order_detail(request, order_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, **get_order(scope, order_id)})


@api_view(['POST'])
@permission_classes([IsPharmacy])
def pharma_order_status(request, order_id: int):
    scope = get_scope(request.user)
    s = StatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    po = set_order_status(request.user, scope, order_id, s.validated_data['status'])
    return Response({'ok': True, 'orderId': po.id, 'status': po.status})
