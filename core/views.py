# core/views.py
import functools
import logging
from datetime import date, datetime
from decimal import Decimal

from django.http import JsonResponse

from .exceptions import MarketplaceError, PermissionDenied

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f'{type(value).__name__} is not JSON serializable')


def json_success(data=None, message='', status=200, **extra):
    body = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    body.update(extra)
    return JsonResponse(body, status=status, json_dumps_params={'default': _json_default})


def json_error(message, status=400):
    return JsonResponse({'success': False, 'error': message}, status=status)


def api_view(view_func):
    """Translate MarketplaceError raised by the services into JSON errors."""
    @functools.wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except MarketplaceError as e:
            if e.status_code >= 500:
                logger.error(f"{view_func.__name__} failed: {type(e).__name__}: {e.message}", exc_info=True)
            else:
                logger.info(f"{view_func.__name__} rejected: {type(e).__name__}: {e.message}")
            return json_error(e.message, status=e.status_code)
    return wrapper


def require_role(user, *roles):
    if not user.is_authenticated or getattr(user, 'role', None) not in roles:
        raise PermissionDenied()
