"""
Report endpoints.

EOD and pending-consultation reports are for the front desk; the common
report is open to reception and doctors; the pharmacy summary is admin
only.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..permissions import CanViewReports, IsAdminRole, IsFrontDesk
from ..serializers.admin import ReportQuerySerializer
from ..services.reports import common_report, eod_consultations, pending_consultations, pharma_report
from ..services.scope import get_scope


def _query(request) -> dict:
    q = ReportQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return q.validated_data


@api_view(['GET'])
@permission_classes([IsFrontDesk])
def eod_report(request):
    scope = get_scope(request.user)
    vd = _query(request)
    return Response({'ok': True, **eod_consultations(scope, vd.get('date'))})


@api_view(['GET'])
@permission_classes([IsFrontDesk])
def pending_report(request):
    scope = get_scope(request.user)
    vd = _query(request)
    data = pending_consultations(
        scope,
        start=vd.get('start'),
        end=vd.get('end'),
        as_of=vd.get('asOf') or None,
        pending_type=vd.get('pendingType') or 'ALL',
        age_bucket=vd.get('ageBucket') or 'ALL',
        doctor_id=vd.get('doctorId'),
        referral_id=(vd.get('referralId') or '').strip() or None,
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([CanViewReports])
def common(request):
    scope = get_scope(request.user)
    vd = _query(request)
    data = common_report(
        request.user, scope,
        start_date=vd.get('startDate'),
        end_date=vd.get('endDate'),
        referral_id=(vd.get('referralId') or '').strip() or None,
        doctor_id=vd.get('doctorId'),
        service_code=vd.get('serviceCode'),
        payment_mode=vd.get('paymentMode'),
        status=vd.get('status') or 'ALL',
        group_by=vd.get('groupBy') or 'NONE',
    )
    return Response({'ok': True, **data})


@api_view(['GET'])
@permission_classes([IsAdminRole])
def pharma(request):
    """Pharmacy order counts per period and doctor."""
    scope = get_scope(request.user)
    vd = _query(request)
    data = pharma_report(scope, date_from=vd['from'] or None, date_to=vd.get('to') or None,
                         group=vd.get('group') or 'day')
    return Response({'ok': True, **data})
