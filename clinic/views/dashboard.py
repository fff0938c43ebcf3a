"""
Dashboards for the reception desk and the consulting doctor.

Both are computed for the clinic-local "today" of the caller's branch.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsClinician, IsFrontDesk
from ..serializers.clinical import DoctorDashboardQuerySerializer
from ..services.dashboards import doctor_dashboard, reception_dashboard
from ..services.scope import get_scope


@api_view(['GET'])
@permission_classes([IsFrontDesk])
def reception_dashboard_view(request):
    """Today's KPIs plus the queue ordered by token."""
    scope = get_scope(request.user)
    return Response({'ok': True, **reception_dashboard(scope)})


@api_view(['GET'])
@permission_classes([IsClinician])
def doctor_dashboard_view(request):
    scope = get_scope(request.user)
    q = DoctorDashboardQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    data = doctor_dashboard(request.user, scope, q=vd.get('q') or vd.get('search') or '',
                            doctor_id=vd.get('doctorId'))
    return Response({'ok': True, **data})
