import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class ScopeError(APIException):
    """Caller has no organization/branch binding."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Your account is not linked to organization/branch.'
    default_code = 'scope_missing'


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflict.'
    default_code = 'conflict'


def _first_message(data):
    if isinstance(data, (list, tuple)):
        return _first_message(data[0]) if data else ''
    if isinstance(data, dict):
        for value in data.values():
            return _first_message(value)
        return ''
    return str(data)


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception('Unhandled error in %s', getattr(view, '__name__', view.__class__.__name__))
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error.'}}, status=500)

    code = getattr(exc, 'default_code', 'api_error')
    detail_codes = exc.get_codes() if hasattr(exc, 'get_codes') else None
    if isinstance(detail_codes, str):
        code = detail_codes

    error = {'code': code}
    data = resp.data
    if isinstance(data, dict) and 'detail' in data:
        error['message'] = str(data['detail'])
    elif isinstance(data, dict):
        # field errors
        error['message'] = _first_message(data)
        error['fields'] = data
    else:
        error['message'] = _first_message(data)
    return Response({'ok': False, 'error': error}, status=resp.status_code, headers=_passthrough_headers(resp))


def _passthrough_headers(resp):
    headers = {}
    for name in ('WWW-Authenticate', 'Retry-After'):
        if resp.has_header(name):
            headers[name] = resp[name]
    return headers
