"""In-app notifications for the signed-in user."""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..serializers.admin import NotificationsQuerySerializer
from ..services.notifications import list_notifications, mark_read, unread_count
from ..services.scope import get_scope


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications(request):
    scope = get_scope(request.user)
    q = NotificationsQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    rows = list_notifications(request.user, scope, status=q.validated_data.get('status'),
                              limit=q.validated_data.get('limit'))
    return Response({'ok': True, 'rows': rows})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def notification_read(request, notification_id: int):
    scope = get_scope(request.user)
    return Response({'ok': True, 'changed': mark_read(request.user, scope, notification_id)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications_unread_count(request):
    scope = get_scope(request.user)
    return Response({'ok': True, 'count': unread_count(request.user, scope)})
