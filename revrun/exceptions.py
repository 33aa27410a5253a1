import logging

from rest_framework.views import exception_handler


logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return None

    detail = response.data.get('detail') if isinstance(response.data, dict) else None
    if detail is None:
        detail = response.data
    logger.info('API error status=%s: %s', response.status_code, detail)
    response.data = {'success': False, 'error': str(detail)}
    return response
