"""
Queue endpoints.

Reception moves today's tokens between WAITING, NEXT, IN_ROOM and
COMPLETED; the consulting doctor closes the visit with ``visit_done``.
Every move is pushed to ``ws/queue/<branch_id>/`` listeners.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsClinician, IsFrontDesk
from ..serializers.reception import QueueStatusSerializer
from ..services.queue import mark_visit_done, set_reception_status
from ..services.scope import get_scope


@api_view(['POST'])
@permission_classes([IsFrontDesk])
def queue_status(request):
    scope = get_scope(request.user)
    s = QueueStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = set_reception_status(request.user, scope, s.validated_data['queueEntryId'], s.validated_data['status'])
    return Response({'ok': True, 'queueEntryId': entry.id, 'visitId': entry.visit_id, 'status': entry.status})


@api_view(['POST'])
@permission_classes([IsClinician])
def visit_done(request, visit_id: int):
    """Doctor is finished: queue entry DONE, visit COMPLETED."""
    scope = get_scope(request.user)
    visit = mark_visit_done(request.user, scope, visit_id)
    return Response({'ok': True, 'visitId': visit.id, 'status': visit.status})
