import csv
import io
import logging
import math

from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.models import ClientProfile
from accounts.permissions import IsAdminRole


logger = logging.getLogger(__name__)
User = get_user_model()

MIN_PASSWORD_LENGTH = 4
CSV_HEADERS = ['Name', 'Username', 'Phone', 'Company', 'Plan', 'Status', 'Meta account ID', 'Joined']
UPDATABLE_TEXT_FIELDS = ('phone', 'company', 'meta_account_id', 'campaign_id')


def _parse_positive_int(raw_value, default: int) -> int:
    try:
        parsed = int(raw_value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _serialize_profile(profile: ClientProfile) -> dict:
    return {
        'id': profile.id,
        'user_id': profile.user_id,
        'name': profile.name,
        'username': profile.user.username,
        'role': profile.role,
        'phone': profile.phone,
        'company': profile.company,
        'plan': profile.plan,
        'status': profile.status,
        'meta_account_id': profile.meta_account_id,
        'campaign_id': profile.campaign_id,
        'created_at': profile.created_at,
        'updated_at': profile.updated_at,
    }


def _server_error() -> Response:
    return Response({'success': False, 'error': 'Server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET', 'POST', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def users(request):
    try:
        if request.method == 'GET':
            return _users_get(request)
        if request.method == 'POST':
            return _users_create(request)
        if request.method == 'PUT':
            return _users_update(request)
        return _users_delete(request)
    except DatabaseError:
        logger.exception('Database failure in users endpoint.')
        return _server_error()


def _users_get(request):
    user_id = str(request.query_params.get('id') or '').strip()
    if user_id:
        profile = ClientProfile.objects.select_related('user').filter(id=_parse_positive_int(user_id, 0)).first()
        if profile is None:
            return Response({'success': False, 'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response({'success': True, 'user': _serialize_profile(profile)}, status=status.HTTP_200_OK)

    if str(request.query_params.get('stats') or '').lower() == 'true':
        return _users_stats()

    if str(request.query_params.get('export') or '').lower() == 'true':
        return _users_export_csv()

    page = _parse_positive_int(request.query_params.get('page'), 1)
    limit = _parse_positive_int(request.query_params.get('limit'), 10)
    offset = (page - 1) * limit

    queryset = ClientProfile.objects.select_related('user')
    search = str(request.query_params.get('search') or '').strip()
    if search:
        queryset = queryset.filter(Q(name__icontains=search) | Q(user__username__icontains=search))
    status_filter = str(request.query_params.get('status') or '').strip()
    if status_filter:
        queryset = queryset.filter(status=status_filter)
    plan_filter = str(request.query_params.get('plan') or '').strip()
    if plan_filter:
        queryset = queryset.filter(plan=plan_filter)

    total = queryset.count()
    rows = queryset.order_by('-created_at', '-id')[offset : offset + limit]
    return Response(
        {
            'success': True,
            'users': [_serialize_profile(profile) for profile in rows],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'totalPages': int(math.ceil(total / limit)) if total else 0,
            },
        },
        status=status.HTTP_200_OK,
    )


def _users_stats():
    counts = {
        'total': ClientProfile.objects.count(),
        ClientProfile.STATUS_ACTIVE: 0,
        ClientProfile.STATUS_PENDING: 0,
        ClientProfile.STATUS_INACTIVE: 0,
    }
    for status_value in (ClientProfile.STATUS_ACTIVE, ClientProfile.STATUS_PENDING, ClientProfile.STATUS_INACTIVE):
        counts[status_value] = ClientProfile.objects.filter(status=status_value).count()
    return Response({'success': True, 'stats': counts}, status=status.HTTP_200_OK)


def _users_export_csv():
    buffer = io.StringIO()
    # BOM so spreadsheet apps detect UTF-8 for Korean names.
    buffer.write('\ufeff')
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for profile in ClientProfile.objects.select_related('user').order_by('-created_at', '-id'):
        writer.writerow(
            [
                profile.name or '',
                profile.user.username or '',
                profile.phone or '',
                profile.company or '',
                profile.plan or '',
                profile.status or '',
                profile.meta_account_id or '',
                timezone.localtime(profile.created_at).date().isoformat() if profile.created_at else '',
            ]
        )

    response = HttpResponse(buffer.getvalue(), content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename=users_{timezone.localdate().isoformat()}.csv'
    return response


def _users_create(request):
    name = str(request.data.get('name') or '').strip()
    username = str(request.data.get('username') or '').strip()
    password = str(request.data.get('password') or '')

    if not name or not username or not password:
        return Response(
            {'success': False, 'error': 'name, username and password are required.'},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if len(password) < MIN_PASSWORD_LENGTH:
        return Response(
            {'success': False, 'error': f'Password must be at least {MIN_PASSWORD_LENGTH} characters.'},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if User.objects.filter(username=username).exists():
        return Response({'success': False, 'error': 'Username already in use.'}, status=status.HTTP_400_BAD_REQUEST)

    with transaction.atomic():
        user = User.objects.create_user(username=username, password=password)
        profile = ClientProfile.objects.create(
            user=user,
            name=name,
            role=ClientProfile.ROLE_CLIENT,
            phone=str(request.data.get('phone') or '').strip() or None,
            company=str(request.data.get('company') or '').strip() or None,
            plan=str(request.data.get('plan') or '').strip() or ClientProfile.PLAN_BASIC,
            status=str(request.data.get('status') or '').strip() or ClientProfile.STATUS_ACTIVE,
            meta_account_id=str(request.data.get('meta_account_id') or '').strip() or None,
            campaign_id=str(request.data.get('campaign_id') or '').strip() or None,
        )
    logger.info('Client account created user_id=%s username=%s', user.id, username)
    return Response({'success': True, 'user': _serialize_profile(profile)}, status=status.HTTP_201_CREATED)


def _users_update(request):
    profile_id = _parse_positive_int(request.query_params.get('id'), 0)
    if not profile_id:
        return Response({'success': False, 'error': 'User ID required'}, status=status.HTTP_400_BAD_REQUEST)

    profile = ClientProfile.objects.select_related('user').filter(id=profile_id).first()
    if profile is None:
        return Response({'success': False, 'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    username = str(request.data.get('username') or '').strip()
    if username and User.objects.filter(username=username).exclude(id=profile.user_id).exists():
        return Response({'success': False, 'error': 'Username already in use.'}, status=status.HTTP_400_BAD_REQUEST)

    update_fields = ['updated_at']
    name = str(request.data.get('name') or '').strip()
    if name:
        profile.name = name
        update_fields.append('name')
    for field in ('plan', 'status'):
        value = str(request.data.get(field) or '').strip()
        if value:
            setattr(profile, field, value)
            update_fields.append(field)
    for field in UPDATABLE_TEXT_FIELDS:
        if field in request.data:
            setattr(profile, field, str(request.data.get(field) or '').strip() or None)
            update_fields.append(field)

    with transaction.atomic():
        if username and username != profile.user.username:
            profile.user.username = username
            profile.user.save(update_fields=['username'])
        profile.save(update_fields=update_fields)

    return Response({'success': True, 'user': _serialize_profile(profile)}, status=status.HTTP_200_OK)


def _users_delete(request):
    profile_id = _parse_positive_int(request.query_params.get('id'), 0)
    if not profile_id:
        return Response({'success': False, 'error': 'User ID required'}, status=status.HTTP_400_BAD_REQUEST)

    profile = ClientProfile.objects.select_related('user').filter(id=profile_id).first()
    if profile is None:
        return Response({'success': False, 'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    # Deleting the auth user cascades to the profile and the client's synced metrics.
    profile.user.delete()
    return Response({'success': True, 'message': 'User deleted'}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_clients(request):
    try:
        rows = (
            ClientProfile.objects.select_related('user')
            .filter(role=ClientProfile.ROLE_CLIENT)
            .order_by('user__username')
        )
        clients = [
            {'user_id': profile.user_id, 'username': profile.user.username, 'name': profile.name}
            for profile in rows
        ]
    except DatabaseError:
        logger.exception('Database failure listing clients.')
        return _server_error()
    return Response({'success': True, 'clients': clients}, status=status.HTTP_200_OK)
