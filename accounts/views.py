import json
import logging

from django.contrib.auth import authenticate, login, logout
from django.http import JsonResponse
from django.middleware.csrf import get_token
from django.views.decorators.csrf import csrf_protect, ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_POST

from accounts.models import ClientProfile, role_for_user


logger = logging.getLogger(__name__)

ADMIN_REDIRECT = '/admin/dashboard.html'
CLIENT_REDIRECT = '/report/dashboard.html'
INVALID_CREDENTIALS = 'Invalid username or password'


def _serialize_session_user(user) -> dict:
    profile = getattr(user, 'client_profile', None)
    return {
        'user_id': user.id,
        'username': user.username,
        'name': profile.name if profile else user.get_full_name() or user.username,
        'role': role_for_user(user),
        'meta_account_id': profile.meta_account_id if profile else None,
        'company': profile.company if profile else None,
        'plan': profile.plan if profile else None,
        'status': profile.status if profile else None,
    }


@ensure_csrf_cookie
@require_GET
def auth_me(request):
    if not request.user.is_authenticated:
        return JsonResponse({'ok': False, 'error': 'Login required', 'csrfToken': get_token(request)}, status=401)

    return JsonResponse(
        {
            'ok': True,
            'csrfToken': get_token(request),
            'user': _serialize_session_user(request.user),
        },
        status=200,
    )


@csrf_protect
@require_POST
def auth_login(request):
    try:
        payload = json.loads(request.body or '{}')
    except json.JSONDecodeError:
        return JsonResponse({'ok': False, 'error': 'Invalid JSON body'}, status=400)

    username = str(payload.get('username') or '').strip()
    password = str(payload.get('password') or '').strip()

    if not username or not password:
        return JsonResponse({'ok': False, 'error': 'Username and password are required'}, status=400)

    user = authenticate(request, username=username, password=password)
    if user is None:
        return JsonResponse({'ok': False, 'error': INVALID_CREDENTIALS}, status=401)

    profile = getattr(user, 'client_profile', None)
    if profile is not None and profile.status == ClientProfile.STATUS_INACTIVE:
        logger.info('Login refused for inactive account user_id=%s', user.id)
        return JsonResponse({'ok': False, 'error': INVALID_CREDENTIALS}, status=401)

    login(request, user)
    role = role_for_user(user)
    return JsonResponse(
        {
            'ok': True,
            'user': _serialize_session_user(user),
            'redirect': ADMIN_REDIRECT if role == ClientProfile.ROLE_ADMIN else CLIENT_REDIRECT,
        },
        status=200,
    )


@csrf_protect
@require_POST
def auth_logout(request):
    if request.user.is_authenticated:
        logout(request)
    return JsonResponse({'ok': True}, status=200)
