from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsScanDesk
from ..serializers.clinical import ScanOrdersQuerySerializer, StatusSerializer
from ..services.scan import advance_scan_order, get_scan_order, list_scan_orders
from ..services.scope import get_scope


@api_view(['GET'])
@permission_classes([IsScanDesk])
def scan_orders(request):
    scope = get_scope(request.user)
    q = ScanOrdersQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    rows = list_scan_orders(scope, status=q.validated_data.get('status'), date=q.validated_data.get('date'))
    return Response({'ok': True, 'rows': rows})


@api_view(['GET', 'POST'])
@permission_classes([IsScanDesk])
def scan_order(request, order_id: int):
    """GET the order; POST ``{status}`` to move it along the scan workflow."""
    scope = get_scope(request.user)
    if request.method == 'GET':
        return Response({'ok': True, 'order': get_scan_order(scope, order_id)})

    s = StatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = advance_scan_order(request.user, scope, order_id, s.validated_data['status'])
    return Response({'ok': True, 'orderId': order.id, 'status': order.status})
