import pytest
from django.urls import reverse
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken

from clinic.models import AuditEvent, User
from clinic.tests.builders import PASSWORD, make_branch, make_doctor, make_user

pytestmark = pytest.mark.django_db


def login(client, email, password=PASSWORD):
    r = client.post(reverse('login_view'), {'email': email, 'password': password}, format='json')
    assert r.status_code in (200, 400, 401)
    return r


def authed(email, password=PASSWORD, scheme='token'):
    client = APIClient()
    r = login(client, email, password)
    assert r.status_code == 200, r.data
    if scheme == 'jwt':
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
    else:
        client.credentials(HTTP_AUTHORIZATION=f"Token {r.data['token']}")
    return client, r


def test_login_returns_jwt_and_legacy_token():
    branch = make_branch()
    make_user(branch, 'desk@clinic.test', 'RECEPTION')
    r = login(APIClient(), 'Desk@Clinic.test')
    assert r.status_code == 200
    assert r.data['ok'] is True
    assert r.data['jwt_access'] and r.data['jwt_refresh'] and r.data['token']
    assert r.data['user']['roles'] == ['RECEPTION']
    assert r.data['user']['branchId'] == branch.id
    assert AuditEvent.objects.filter(action='login', detail__result='ok').count() == 1


def test_login_accepts_username_alias():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    r = APIClient().post(reverse('login_view'), {'username': 'desk@clinic.test', 'password': PASSWORD},
                         format='json')
    assert r.status_code == 200


def test_bad_password_and_inactive_account_are_rejected_alike():
    branch = make_branch()
    make_user(branch, 'desk@clinic.test', 'RECEPTION')
    make_user(branch, 'gone@clinic.test', 'RECEPTION', is_active=False)

    r = login(APIClient(), 'desk@clinic.test', 'wrong-password')
    assert r.status_code == 400
    assert r.data['error']['message'] == 'Invalid email or password.'

    r = login(APIClient(), 'gone@clinic.test')
    assert r.status_code == 400
    assert r.data['error']['message'] == 'Invalid email or password.'
    assert AuditEvent.objects.filter(action='login', detail__result='fail').count() == 2


def test_login_requires_both_fields():
    r = APIClient().post(reverse('login_view'), {'email': 'desk@clinic.test'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['message'] == 'Email and password are required.'


def test_no_role_escalation_through_login_payload():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    r = APIClient().post(reverse('login_view'),
                         {'email': 'desk@clinic.test', 'password': PASSWORD, 'roles': ['SUPER_ADMIN']},
                         format='json')
    assert r.status_code == 200
    assert User.objects.get(email='desk@clinic.test').role_codes == {'RECEPTION'}


def test_unauthenticated_requests_get_401():
    r = APIClient().get('/api/reception/dashboard')
    assert r.status_code == 401
    assert r.data['ok'] is False


def test_wrong_role_gets_403():
    make_user(make_branch(), 'scan@clinic.test', 'SCAN_IN_CHARGE')
    client, _ = authed('scan@clinic.test')
    r = client.get('/api/reception/dashboard')
    assert r.status_code == 403


def test_account_without_branch_gets_400():
    make_user(None, 'floating@clinic.test', 'RECEPTION')
    client, _ = authed('floating@clinic.test')
    r = client.get('/api/reception/dashboard')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'scope_missing'
    assert r.data['error']['message'] == 'Your account is not linked to organization/branch.'


def test_bearer_jwt_is_accepted():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    client, _ = authed('desk@clinic.test', scheme='jwt')
    r = client.get('/api/reception/dashboard')
    assert r.status_code == 200
    assert r.data['ok'] is True


def test_me_includes_linked_doctor():
    branch = make_branch(name='Main Road Clinic')
    user = make_user(branch, 'meena@clinic.test', 'DOCTOR', full_name='Dr. Meena')
    doctor = make_doctor(branch, user=user)
    client, _ = authed('meena@clinic.test')
    r = client.get(reverse('me_view'))
    assert r.status_code == 200
    assert r.data['user']['doctorId'] == doctor.id
    assert r.data['user']['branchName'] == 'Main Road Clinic'
    assert r.data['user']['name'] == 'Dr. Meena'


def test_refresh_issues_new_access_token():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    _, r = authed('desk@clinic.test')
    rr = APIClient().post(reverse('jwt_refresh_view'), {'refresh': r.data['jwt_refresh']}, format='json')
    assert rr.status_code == 200
    assert rr.data['jwt_access']

    bad = APIClient().post(reverse('jwt_refresh_view'), {'refresh': 'not-a-token'}, format='json')
    assert bad.status_code == 401


def test_logout_blacklists_refresh_and_drops_legacy_token():
    user = make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    client, r = authed('desk@clinic.test')
    out = client.post(reverse('jwt_logout_view'), {'refresh': r.data['jwt_refresh']}, format='json')
    assert out.status_code == 200
    assert out.data['blacklisted'] == 1
    assert BlacklistedToken.objects.count() == 1
    assert not Token.objects.filter(user=user).exists()

    # the old legacy token no longer works
    again = client.get(reverse('me_view'))
    assert again.status_code == 401

    rr = APIClient().post(reverse('jwt_refresh_view'), {'refresh': r.data['jwt_refresh']}, format='json')
    assert rr.status_code == 401


def test_logout_without_refresh_blacklists_everything():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    login(APIClient(), 'desk@clinic.test')
    client, _ = authed('desk@clinic.test', scheme='jwt')
    out = client.post(reverse('jwt_logout_view'), {}, format='json')
    assert out.status_code == 200
    assert out.data['blacklisted'] == 2


def test_logout_rejects_garbage_refresh():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    client, _ = authed('desk@clinic.test')
    out = client.post(reverse('jwt_logout_view'), {'refresh': 'garbage'}, format='json')
    assert out.status_code == 400
    assert out.data['error']['message'] == 'Invalid refresh token.'


def test_logout_refuses_another_users_refresh_token():
    branch = make_branch()
    make_user(branch, 'desk@clinic.test', 'RECEPTION')
    make_user(branch, 'other@clinic.test', 'RECEPTION')
    _, victim = authed('other@clinic.test')
    client, _ = authed('desk@clinic.test')

    out = client.post(reverse('jwt_logout_view'), {'refresh': victim.data['jwt_refresh']}, format='json')
    assert out.status_code == 403
    assert BlacklistedToken.objects.count() == 0

    rr = APIClient().post(reverse('jwt_refresh_view'), {'refresh': victim.data['jwt_refresh']}, format='json')
    assert rr.status_code == 200


def test_healthz_reports_database():
    r = APIClient().get('/healthz')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': True}


def test_login_is_throttled():
    make_user(make_branch(), 'desk@clinic.test', 'RECEPTION')
    client = APIClient()
    codes = [login(client, 'desk@clinic.test', 'wrong-password').status_code for _ in range(10)]
    assert codes == [400] * 10
    r = client.post(reverse('login_view'), {'email': 'desk@clinic.test', 'password': PASSWORD}, format='json')
    assert r.status_code == 429
