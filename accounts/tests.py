import json

from django.contrib.auth import get_user_model
from django.test import Client, TestCase

from accounts.models import ClientProfile


User = get_user_model()


def _create_client_account(username, password='Secret123!', **profile_fields):
    user = User.objects.create_user(username=username, password=password)
    profile_fields.setdefault('name', username.title())
    ClientProfile.objects.create(user=user, **profile_fields)
    return user


class AuthSessionTests(TestCase):
    def setUp(self):
        self.client_user = _create_client_account('bakery', campaign_id='120001')
        self.admin_user = _create_client_account('ops', role=ClientProfile.ROLE_ADMIN, name='Ops')

    def test_login_me_logout_cycle_uses_session(self):
        client = Client()

        anonymous_me = client.get('/api/me')
        self.assertEqual(anonymous_me.status_code, 401)
        self.assertFalse(anonymous_me.json()['ok'])

        login_response = client.post(
            '/api/login',
            data=json.dumps({'username': 'bakery', 'password': 'Secret123!'}),
            content_type='application/json',
        )
        self.assertEqual(login_response.status_code, 200)
        body = login_response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['user']['role'], 'client')
        self.assertEqual(body['redirect'], '/report/dashboard.html')
        self.assertTrue(client.cookies['sessionid']['httponly'])

        me_response = client.get('/api/me')
        self.assertEqual(me_response.status_code, 200)
        self.assertEqual(me_response.json()['user']['username'], 'bakery')

        logout_response = client.post('/api/logout')
        self.assertEqual(logout_response.status_code, 200)
        self.assertEqual(client.get('/api/me').status_code, 401)

    def test_admin_login_redirects_to_admin_dashboard(self):
        response = Client().post(
            '/api/login',
            data=json.dumps({'username': 'ops', 'password': 'Secret123!'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['redirect'], '/admin/dashboard.html')

    def test_login_errors_do_not_reveal_which_credential_failed(self):
        client = Client()
        wrong_password = client.post(
            '/api/login',
            data=json.dumps({'username': 'bakery', 'password': 'nope'}),
            content_type='application/json',
        )
        unknown_user = client.post(
            '/api/login',
            data=json.dumps({'username': 'ghost', 'password': 'nope'}),
            content_type='application/json',
        )
        self.assertEqual(wrong_password.status_code, 401)
        self.assertEqual(unknown_user.status_code, 401)
        self.assertEqual(wrong_password.json()['error'], unknown_user.json()['error'])

    def test_inactive_account_cannot_login(self):
        _create_client_account('dormant', status=ClientProfile.STATUS_INACTIVE)
        response = Client().post(
            '/api/login',
            data=json.dumps({'username': 'dormant', 'password': 'Secret123!'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Invalid username or password')

    def test_login_requires_both_fields(self):
        response = Client().post(
            '/api/login',
            data=json.dumps({'username': 'bakery'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)


class UsersEndpointTests(TestCase):
    def setUp(self):
        self.admin_user = _create_client_account('ops', role=ClientProfile.ROLE_ADMIN, name='Ops')
        self.client = Client()
        self.client.force_login(self.admin_user)

    def _create(self, **payload):
        return self.client.post('/api/users', data=json.dumps(payload), content_type='application/json')

    def test_create_list_update_delete(self):
        created = self._create(name='Wind Bakeshop', username='wind', password='abcd', phone='010-1234', plan='pro')
        self.assertEqual(created.status_code, 201)
        profile_id = created.json()['user']['id']
        self.assertEqual(created.json()['user']['role'], 'client')
        self.assertTrue(User.objects.get(username='wind').check_password('abcd'))

        listing = self.client.get('/api/users?search=wind')
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()['pagination']['total'], 1)
        self.assertEqual(listing.json()['users'][0]['username'], 'wind')

        updated = self.client.put(
            f'/api/users?id={profile_id}',
            data=json.dumps({'status': 'pending', 'campaign_id': '120009'}),
            content_type='application/json',
        )
        self.assertEqual(updated.status_code, 200)
        profile = ClientProfile.objects.get(id=profile_id)
        self.assertEqual(profile.status, 'pending')
        self.assertEqual(profile.campaign_id, '120009')
        self.assertEqual(profile.plan, 'pro')

        deleted = self.client.delete(f'/api/users?id={profile_id}')
        self.assertEqual(deleted.status_code, 200)
        self.assertFalse(User.objects.filter(username='wind').exists())
        self.assertFalse(ClientProfile.objects.filter(id=profile_id).exists())

    def test_create_validates_input(self):
        self.assertEqual(self._create(name='x', username='short', password='abc').status_code, 400)
        self.assertEqual(self._create(username='noname', password='abcd').status_code, 400)

        self.assertEqual(self._create(name='First', username='dup', password='abcd').status_code, 201)
        duplicate = self._create(name='Second', username='dup', password='abcd')
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(User.objects.filter(username='dup').count(), 1)

    def test_stats_counts_by_status(self):
        _create_client_account('a1')
        _create_client_account('a2', status=ClientProfile.STATUS_PENDING)
        _create_client_account('a3', status=ClientProfile.STATUS_INACTIVE)

        response = self.client.get('/api/users?stats=true')
        self.assertEqual(response.status_code, 200)
        stats = response.json()['stats']
        self.assertEqual(stats['total'], 4)
        self.assertEqual(stats['active'], 2)
        self.assertEqual(stats['pending'], 1)
        self.assertEqual(stats['inactive'], 1)

    def test_csv_export_has_bom_and_quoted_rows(self):
        _create_client_account('hangang', name='한강 카페', company='Hangang')

        response = self.client.get('/api/users?export=true')
        self.assertEqual(response.status_code, 200)
        self.assertIn('text/csv', response['Content-Type'])
        self.assertIn('attachment; filename=users_', response['Content-Disposition'])
        text = response.content.decode('utf-8')
        self.assertTrue(text.startswith('\ufeff"Name","Username"'))
        self.assertIn('"한강 카페","hangang"', text)

    def test_pagination_limits_rows(self):
        for index in range(3):
            _create_client_account(f'client{index}')

        response = self.client.get('/api/users?page=2&limit=2')
        body = response.json()
        self.assertEqual(len(body['users']), 2)
        self.assertEqual(body['pagination']['total'], 4)
        self.assertEqual(body['pagination']['totalPages'], 2)

    def test_missing_user_returns_404(self):
        self.assertEqual(self.client.get('/api/users?id=999').status_code, 404)
        self.assertEqual(self.client.delete('/api/users?id=999').status_code, 404)
        self.assertEqual(self.client.delete('/api/users').status_code, 400)


class AdminAuthorizationTests(TestCase):
    def setUp(self):
        self.client_user = _create_client_account('bakery')
        self.admin_user = _create_client_account('ops', role=ClientProfile.ROLE_ADMIN, name='Ops')

    def test_client_role_cannot_manage_users(self):
        client = Client()
        client.force_login(self.client_user)
        response = client.get('/api/users')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'success': False, 'error': 'Admin only'})

    def test_anonymous_request_is_rejected_with_envelope(self):
        response = Client().get('/api/admin/clients')
        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.json()['success'])

    def test_admin_clients_lists_client_usernames(self):
        client = Client()
        client.force_login(self.admin_user)
        response = client.get('/api/admin/clients')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['username'] for row in response.json()['clients']], ['bakery'])

    def test_superuser_without_profile_is_admin(self):
        root = User.objects.create_superuser(username='root', password='Secret123!')
        client = Client()
        client.force_login(root)
        self.assertEqual(client.get('/api/admin/clients').status_code, 200)
