from datetime import timedelta
from unittest import mock

import pytest
from django.db import DatabaseError
from django.utils import timezone
from rest_framework.test import APIClient

from bloodrequests.models import BloodRequest
from bloodrequests.tasks import dispatch_blood_request_notifications, reconcile_donor_response_notifications
from donors.directory import DonorDirectory
from notifications.models import Notification
from notifications.store import NotificationStore

pytestmark = pytest.mark.django_db


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(admin_user)
    return client


@pytest.fixture
def donors(make_donor):
    return {
        'olga': make_donor('olga', 'O-'),
        'ben': make_donor('ben', 'B+'),
        'anna': make_donor('anna', 'A+'),
    }


def as_user(user):
    client = APIClient()
    client.force_authenticate(user)
    return client


def submit(client, data):
    return client.post('/api/blood-requests/', data, format='json')


class TestSubmit:

    def test_public_submission_notifies_donors(self, client, donors, blood_request_data):
        response = submit(client, blood_request_data)

        assert response.status_code == 201
        body = response.json()
        assert body['success'] is True
        assert body['notifications_sent'] == 2
        assert body['compatible_donors_found'] == 2
        blood_request = BloodRequest.objects.get(pk=body['request_id'])
        assert blood_request.source == 'public_form'
        assert blood_request.requester_id is None

    def test_signed_in_requester_is_excluded(self, donors, blood_request_data):
        response = submit(as_user(donors['olga']), blood_request_data)

        body = response.json()
        assert body['compatible_donors_found'] == 1
        assert BloodRequest.objects.get(pk=body['request_id']).source == 'dashboard'
        assert not Notification.objects.filter(user=donors['olga']).exists()

    def test_blood_group_is_normalized(self, client, donors, blood_request_data):
        response = submit(client, dict(blood_request_data, blood_group=' a+ '))

        assert response.status_code == 201
        assert BloodRequest.objects.get().blood_group == 'A+'

    def test_invalid_blood_group(self, client, blood_request_data):
        response = submit(client, dict(blood_request_data, blood_group='X+'))

        assert response.status_code == 400
        assert response.json() == {'success': False, 'message': 'Invalid recipient blood group: X+'}
        assert not BloodRequest.objects.exists()

    def test_missing_fields(self, client):
        response = submit(client, {'blood_group': 'A+'})

        assert response.status_code == 400
        body = response.json()
        assert body['success'] is False
        assert 'patient_name' in body['errors']
        assert 'hospital_name' in body['errors']

    def test_dispatch_failure_queues_retry(self, client, donors, blood_request_data, django_capture_on_commit_callbacks):
        with mock.patch.object(NotificationStore, 'create_batch', side_effect=DatabaseError('down')), \
                mock.patch.object(dispatch_blood_request_notifications, 'apply_async') as apply_async:
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                response = submit(client, blood_request_data)

        assert response.status_code == 201
        body = response.json()
        assert body['notifications_sent'] == 0
        assert body['dispatch_failed'] is True
        assert 'retried' in body['message']
        assert len(callbacks) == 1
        apply_async.assert_called_once_with(args=[body['request_id']], countdown=60)

    def test_directory_failure_still_stores_request(self, client, donors, blood_request_data,
                                                    django_capture_on_commit_callbacks):
        with mock.patch.object(DonorDirectory, 'find_active_eligible_donors', side_effect=DatabaseError('down')), \
                mock.patch.object(dispatch_blood_request_notifications, 'apply_async') as apply_async:
            with django_capture_on_commit_callbacks(execute=True):
                response = submit(client, blood_request_data)

        assert response.status_code == 201
        assert response.json()['dispatch_failed'] is True
        assert BloodRequest.objects.count() == 1
        apply_async.assert_called_once()

    def test_successful_dispatch_queues_nothing(self, client, donors, blood_request_data,
                                                django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            submit(client, blood_request_data)

        assert callbacks == []


class TestList:

    def test_requires_admin(self, client, donors):
        assert client.get('/api/blood-requests/').status_code in (401, 403)
        assert as_user(donors['olga']).get('/api/blood-requests/').status_code == 403

    def test_filters_and_limit(self, admin_client, client, donors, blood_request_data):
        submit(client, blood_request_data)
        submit(client, dict(blood_request_data, blood_group='O-', urgency_level='critical'))

        body = admin_client.get('/api/blood-requests/', {'blood_group': 'O-'}).json()
        assert body['total'] == 1
        assert body['data'][0]['urgency_level'] == 'critical'

        assert admin_client.get('/api/blood-requests/', {'limit': 1}).json()['total'] == 1
        assert admin_client.get('/api/blood-requests/', {'limit': 'x'}).status_code == 400

    def test_list_prunes_old_finished_requests(self, admin_client, client, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']
        BloodRequest.objects.filter(pk=request_id).update(
            status='completed', created_at=timezone.now() - timedelta(days=10)
        )

        body = admin_client.get('/api/blood-requests/').json()

        assert body['pruned'] == 1
        assert body['total'] == 0
        assert not BloodRequest.objects.exists()

    def test_prune_on_list_can_be_disabled(self, admin_client, client, blood_request_data, settings):
        settings.BLOOD_ALERT = dict(settings.BLOOD_ALERT, PRUNE_ON_LIST=False)
        request_id = submit(client, blood_request_data).json()['request_id']
        BloodRequest.objects.filter(pk=request_id).update(
            status='completed', created_at=timezone.now() - timedelta(days=10)
        )

        assert admin_client.get('/api/blood-requests/').json()['total'] == 1


class TestRespond:

    def test_accept_flow(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']
        olga = donors['olga']

        response = as_user(olga).post(
            f'/api/blood-requests/{request_id}/respond/',
            {'response': 'accepted', 'message': 'Coming'},
            format='json',
        )

        assert response.status_code == 200
        body = response.json()
        assert 'shared with the requester' in body['message']
        assert body['reconciled'] is True
        assert body['donor_response']['contact_shared'] is True
        assert body['donor_response']['donor_id'] == olga.pk
        assert Notification.objects.filter(type='donor_accepted', is_global=True).count() == 1
        assert Notification.objects.filter(type='donation_reminder', user=olga).count() == 1
        assert not Notification.objects.filter(type='blood_request', user=olga).exists()

    def test_cannot_respond_for_someone_else(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        response = as_user(donors['anna']).post(
            f'/api/blood-requests/{request_id}/respond/',
            {'response': 'accepted', 'donor_id': donors['olga'].pk},
            format='json',
        )

        assert response.status_code == 403
        assert response.json()['message'] == 'Unauthorized: You can only respond as yourself'

    def test_anonymous_cannot_respond(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        response = client.post(f'/api/blood-requests/{request_id}/respond/', {'response': 'accepted'}, format='json')

        assert response.status_code in (401, 403)

    def test_invalid_response(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        response = as_user(donors['olga']).post(
            f'/api/blood-requests/{request_id}/respond/', {'response': 'sure'}, format='json'
        )

        assert response.status_code == 400

    def test_missing_request(self, donors):
        response = as_user(donors['olga']).post('/api/blood-requests/999/respond/', {'response': 'maybe'}, format='json')

        assert response.status_code == 404
        assert response.json()['success'] is False

    def test_reconcile_failure_queues_retry(self, client, donors, blood_request_data,
                                            django_capture_on_commit_callbacks):
        request_id = submit(client, blood_request_data).json()['request_id']
        olga = donors['olga']

        with mock.patch.object(NotificationStore, 'get_or_create', side_effect=DatabaseError('down')), \
                mock.patch.object(reconcile_donor_response_notifications, 'apply_async') as apply_async:
            with django_capture_on_commit_callbacks(execute=True):
                response = as_user(olga).post(
                    f'/api/blood-requests/{request_id}/respond/', {'response': 'accepted'}, format='json'
                )

        assert response.status_code == 200
        assert response.json()['reconciled'] is False
        apply_async.assert_called_once_with(args=[request_id, olga.pk], countdown=60)


class TestRetrieveAndStatus:

    def test_notified_donor_can_view(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        assert as_user(donors['olga']).get(f'/api/blood-requests/{request_id}/').status_code == 200
        assert as_user(donors['ben']).get(f'/api/blood-requests/{request_id}/').status_code == 404

    def test_admin_updates_status(self, admin_client, client, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        response = admin_client.put(
            f'/api/blood-requests/{request_id}/status/', {'status': 'completed', 'fulfilled': True}, format='json'
        )

        assert response.status_code == 200
        assert response.json()['data']['fulfilled'] is True

        reopen = admin_client.patch(f'/api/blood-requests/{request_id}/status/', {'status': 'active'}, format='json')
        assert reopen.status_code == 400

    def test_donor_cannot_update_status(self, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']

        response = as_user(donors['olga']).put(
            f'/api/blood-requests/{request_id}/status/', {'status': 'cancelled'}, format='json'
        )

        assert response.status_code == 403

    def test_admin_redispatch(self, admin_client, client, donors, blood_request_data, make_donor):
        request_id = submit(client, blood_request_data).json()['request_id']
        make_donor('late', 'A-')

        body = admin_client.post(f'/api/blood-requests/{request_id}/dispatch/').json()

        assert body['notifications_sent'] == 1
        assert body['compatible_donors_found'] == 3

    def test_redispatch_failure_is_503(self, admin_client, client, donors, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']
        Notification.objects.all().delete()

        with mock.patch.object(NotificationStore, 'create_batch', side_effect=DatabaseError('down')):
            response = admin_client.post(f'/api/blood-requests/{request_id}/dispatch/')

        assert response.status_code == 503
        assert response.json()['retryable'] is True

    def test_admin_prune(self, admin_client, client, blood_request_data):
        request_id = submit(client, blood_request_data).json()['request_id']
        BloodRequest.objects.filter(pk=request_id).update(
            status='rejected', created_at=timezone.now() - timedelta(days=3)
        )

        assert admin_client.post('/api/blood-requests/prune/', {'max_age_days': 7}, format='json').json()['deleted'] == 0
        assert admin_client.post('/api/blood-requests/prune/', {'max_age_days': 2}, format='json').json()['deleted'] == 1


class TestNotifications:

    def test_inbox_and_read(self, client, donors, blood_request_data):
        submit(client, blood_request_data)
        olga = as_user(donors['olga'])

        body = olga.get('/api/notifications/').json()
        assert body['total'] == 1
        assert body['unread_count'] == 1
        notification = body['data'][0]
        assert notification['type'] == 'blood_request'
        assert notification['request_status'] == 'active'

        assert olga.post(f"/api/notifications/{notification['id']}/read/").json()['data']['read'] is True
        assert olga.get('/api/notifications/').json()['unread_count'] == 0

    def test_cannot_read_others_notifications(self, client, donors, blood_request_data):
        submit(client, blood_request_data)
        notification = Notification.objects.filter(user=donors['olga']).get()

        response = as_user(donors['ben']).post(f'/api/notifications/{notification.pk}/read/')

        assert response.status_code == 404

    def test_read_all(self, client, donors, blood_request_data):
        submit(client, blood_request_data)
        submit(client, blood_request_data)
        anna = as_user(donors['anna'])

        assert anna.post('/api/notifications/read-all/').status_code == 200
        assert anna.get('/api/notifications/').json()['unread_count'] == 0

    def test_acceptance_visible_to_requester_only(self, client, donors, blood_request_data, make_user):
        requester = make_user('requester')
        request_id = submit(as_user(requester), blood_request_data).json()['request_id']
        as_user(donors['olga']).post(f'/api/blood-requests/{request_id}/respond/', {'response': 'accepted'}, format='json')

        types = [n['type'] for n in as_user(requester).get('/api/notifications/').json()['data']]
        assert types == ['donor_accepted']
        anna_types = [n['type'] for n in as_user(donors['anna']).get('/api/notifications/').json()['data']]
        assert 'donor_accepted' not in anna_types


class TestMisc:

    def test_donor_list_for_admin(self, admin_client, donors):
        body = admin_client.get('/api/donors/', {'blood_group': 'O-'}).json()
        assert [d['donor_id'] for d in body] == [donors['olga'].pk]

    def test_blood_types(self, client):
        assert client.get('/api/blood-types/').json()['data'] == ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']

    def test_health(self, client):
        assert client.get('/api/health/').json()['success'] is True
