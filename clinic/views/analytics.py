"""
Doctor analytics and the doctor visit report.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import IsClinician
from ..serializers.clinical import DoctorRangeQuerySerializer
from ..services.analytics import doctor_analytics, doctor_visit_report
from ..services.scope import get_scope


def _query(request) -> dict:
    q = DoctorRangeQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return q.validated_data


@api_view(['GET'])
@permission_classes([IsClinician])
def doctor_analytics_view(request):
    scope = get_scope(request.user)
    vd = _query(request)
    data = doctor_analytics(
        request.user, scope,
        start=vd.get('start'), end=vd.get('end'), doctor_id=vd.get('doctorId'),
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([IsClinician])
def doctor_report_view(request):
    scope = get_scope(request.user)
    vd = _query(request)
    rows = doctor_visit_report(
        request.user, scope,
        start=vd.get('start'), end=vd.get('end'),
        doctor_id=vd.get('doctorId'), referral_id=(vd.get('referralId') or '').strip() or None,
    )
    return Response({'ok': True, 'rows': rows})
