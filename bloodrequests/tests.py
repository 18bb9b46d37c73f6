from datetime import timedelta
from unittest import mock

import pytest
from django.contrib import admin
from django.db import DatabaseError, IntegrityError
from django.test import RequestFactory
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from bloodalert.exceptions import (
    DispatchPartialFailure,
    InvalidBloodGroup,
    InvalidResponse,
    InvalidStatusTransition,
    NotFound,
    StorageConflict,
    Unauthorized,
)
from bloodrequests import services
from bloodrequests.admin import BloodRequestAdmin, DonorResponseAdmin
from bloodrequests.housekeeping import prune_stale_requests
from bloodrequests.models import BloodRequest, DonorResponse
from bloodrequests.responder import ACCEPTED_MESSAGE, RECORDED_MESSAGE, ResponseHandler
from bloodrequests.store import RequestStore
from bloodrequests.tasks import (
    dispatch_blood_request_notifications,
    prune_stale_blood_requests,
    reconcile_donor_response_notifications,
)
from notifications.dispatcher import NotificationDispatcher
from notifications.models import Notification
from notifications.store import NotificationStore

pytestmark = pytest.mark.django_db


def age(blood_request, days):
    BloodRequest.objects.filter(pk=blood_request.pk).update(created_at=timezone.now() - timedelta(days=days))
    blood_request.refresh_from_db()
    return blood_request


# ------------------------------------------
# Request store
# ------------------------------------------
class TestRequestStore:

    def test_create_initial_state(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)

        assert blood_request.pk is not None
        assert blood_request.status == BloodRequest.STATUS_ACTIVE
        assert blood_request.fulfilled is False
        assert blood_request.requester_id is None
        assert list(blood_request.donor_responses.all()) == []

    def test_create_rejects_bad_blood_group(self, request_store, blood_request_data):
        blood_request_data['blood_group'] = 'X+'
        with pytest.raises(InvalidBloodGroup):
            request_store.create(**blood_request_data)
        assert not BloodRequest.objects.exists()

    def test_create_rejects_unknown_field(self, request_store, blood_request_data):
        with pytest.raises(ValidationError):
            request_store.create(status='completed', **blood_request_data)

    def test_create_validates_fields(self, request_store, blood_request_data):
        blood_request_data['urgency_level'] = 'someday'
        with pytest.raises(ValidationError):
            request_store.create(**blood_request_data)

    def test_get_missing(self, request_store):
        with pytest.raises(NotFound):
            request_store.get(999)

    def test_list_filters_newest_first(self, request_store, blood_request_data):
        first = request_store.create(**blood_request_data)
        second = request_store.create(**dict(blood_request_data, blood_group='O-', urgency_level='critical'))
        third = request_store.create(**blood_request_data)

        assert [r.pk for r in request_store.list()] == [third.pk, second.pk, first.pk]
        assert [r.pk for r in request_store.list(blood_group='A+')] == [third.pk, first.pk]
        assert [r.pk for r in request_store.list(urgency_level='critical')] == [second.pk]
        assert [r.pk for r in request_store.list(limit=1)] == [third.pk]

    def test_upsert_replaces_per_donor(self, request_store, blood_request_data, make_donor):
        donor = make_donor('olga', 'O-')
        other = make_donor('anna', 'A+')
        blood_request = request_store.create(**blood_request_data)

        request_store.upsert_donor_response(blood_request.pk, donor.pk, donor_name='Olga', response='declined')
        request_store.upsert_donor_response(blood_request.pk, other.pk, donor_name='Anna', response='maybe')
        request_store.upsert_donor_response(blood_request.pk, donor.pk, donor_name='Olga', response='accepted')

        responses = {r.donor_id: r.response for r in request_store.get(blood_request.pk).donor_responses.all()}
        assert responses == {donor.pk: 'accepted', other.pk: 'maybe'}

    def test_upsert_retries_then_conflicts(self, blood_request_data, make_donor):
        store = RequestStore(upsert_attempts=3)
        donor = make_donor('olga', 'O-')
        blood_request = store.create(**blood_request_data)

        with mock.patch.object(DonorResponse.objects, 'update_or_create', side_effect=IntegrityError('dup')) as upsert:
            with pytest.raises(StorageConflict):
                store.upsert_donor_response(blood_request.pk, donor.pk, donor_name='Olga', response='accepted')

        assert upsert.call_count == 3

    def test_upsert_recovers_from_one_conflict(self, blood_request_data, make_donor):
        store = RequestStore(upsert_attempts=3)
        donor = make_donor('olga', 'O-')
        blood_request = store.create(**blood_request_data)
        real = DonorResponse.objects.update_or_create
        calls = []

        def flaky(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise IntegrityError('dup')
            return real(**kwargs)

        with mock.patch.object(DonorResponse.objects, 'update_or_create', side_effect=flaky):
            donor_response = store.upsert_donor_response(
                blood_request.pk, donor.pk, donor_name='Olga', response='accepted'
            )

        assert len(calls) == 2
        assert donor_response.response == 'accepted'

    def test_status_transitions(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)

        completed = request_store.update_status(blood_request.pk, 'completed', fulfilled=True)
        assert completed.status == 'completed'
        assert completed.fulfilled is True
        assert completed.fulfilled_at is not None

        with pytest.raises(InvalidStatusTransition):
            request_store.update_status(blood_request.pk, 'active')

    def test_fulfilled_only_when_completed(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)
        with pytest.raises(InvalidStatusTransition):
            request_store.update_status(blood_request.pk, 'cancelled', fulfilled=True)

    def test_reject_stamps_time(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)
        rejected = request_store.update_status(blood_request.pk, 'rejected')
        assert rejected.rejected_at is not None

    def test_unknown_status(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)
        with pytest.raises(InvalidStatusTransition):
            request_store.update_status(blood_request.pk, 'archived')

    def test_delete_if_stale_and_terminal(self, request_store, blood_request_data):
        old_done = age(request_store.create(**blood_request_data), 10)
        request_store.update_status(old_done.pk, 'completed')
        old_active = age(request_store.create(**blood_request_data), 10)
        new_done = request_store.create(**blood_request_data)
        request_store.update_status(new_done.pk, 'rejected')

        assert request_store.delete_if_stale_and_terminal(7) == 1
        assert set(BloodRequest.objects.values_list('pk', flat=True)) == {old_active.pk, new_done.pk}


# ------------------------------------------
# Response handler
# ------------------------------------------
class TestResponseHandler:

    @pytest.fixture
    def setup(self, fake_directory, blood_request_data):
        store = RequestStore()
        blood_request = store.create(**blood_request_data)
        NotificationDispatcher(directory=fake_directory).dispatch(blood_request)
        handler = ResponseHandler(directory=fake_directory)
        donor = fake_directory.donors[0]
        return handler, blood_request, donor

    def test_accept_shares_contact_and_reconciles(self, setup):
        handler, blood_request, donor = setup

        result = handler.respond(blood_request.pk, donor.id, 'accepted', 'On my way', caller_id=donor.id)

        assert result.message == ACCEPTED_MESSAGE
        assert result.reconciled is True
        responses = list(blood_request.donor_responses.all())
        assert len(responses) == 1
        assert responses[0].donor_id == donor.id
        assert responses[0].contact_shared is True
        assert responses[0].donor_phone == donor.phone

        donor_notifications = Notification.objects.filter(blood_request=blood_request, user_id=donor.id)
        assert not donor_notifications.filter(type=Notification.TYPE_BLOOD_REQUEST).exists()
        assert donor_notifications.filter(type=Notification.TYPE_DONATION_REMINDER).count() == 1

        accepted = Notification.objects.get(type=Notification.TYPE_DONOR_ACCEPTED)
        assert accepted.is_global is True
        assert accepted.user_id is None
        assert accepted.contact_details['donor_email'] == donor.email
        assert accepted.contact_details['message'] == 'On my way'

    def test_decline_marks_prompt_responded(self, setup):
        handler, blood_request, donor = setup

        result = handler.respond(blood_request.pk, donor.id, 'declined', caller_id=donor.id)

        assert result.message == RECORDED_MESSAGE
        assert result.donor_response.contact_shared is False
        prompt = Notification.objects.get(
            blood_request=blood_request, user_id=donor.id, type=Notification.TYPE_BLOOD_REQUEST
        )
        assert prompt.responded is True
        assert prompt.read is True
        assert not Notification.objects.filter(type=Notification.TYPE_DONOR_ACCEPTED).exists()

    def test_same_response_twice_keeps_one_entry(self, setup):
        handler, blood_request, donor = setup

        first = handler.respond(blood_request.pk, donor.id, 'maybe', caller_id=donor.id)
        second = handler.respond(blood_request.pk, donor.id, 'maybe', caller_id=donor.id)

        assert blood_request.donor_responses.count() == 1
        assert second.donor_response.pk == first.donor_response.pk
        assert second.donor_response.responded_at >= first.donor_response.responded_at

    def test_latest_response_wins(self, setup):
        handler, blood_request, donor = setup

        handler.respond(blood_request.pk, donor.id, 'declined', caller_id=donor.id)
        handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)

        responses = list(blood_request.donor_responses.all())
        assert [(r.donor_id, r.response, r.contact_shared) for r in responses] == [(donor.id, 'accepted', True)]

    def test_acceptance_does_not_fulfil(self, setup, fake_directory):
        handler, blood_request, _ = setup

        for donor in (fake_directory.donors[0], fake_directory.donors[2]):
            handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)

        blood_request.refresh_from_db()
        assert blood_request.status == BloodRequest.STATUS_ACTIVE
        assert blood_request.fulfilled is False
        assert len(blood_request.accepted_responses) == 2

    def test_caller_must_be_donor(self, setup):
        handler, blood_request, donor = setup
        with pytest.raises(Unauthorized):
            handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id + 1000)
        with pytest.raises(Unauthorized):
            handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=None)
        assert not blood_request.donor_responses.exists()

    def test_invalid_response_value(self, setup):
        handler, blood_request, donor = setup
        with pytest.raises(InvalidResponse):
            handler.respond(blood_request.pk, donor.id, 'yes', caller_id=donor.id)

    def test_missing_request_or_donor(self, setup, make_user):
        handler, blood_request, donor = setup
        with pytest.raises(NotFound):
            handler.respond(12345, donor.id, 'accepted', caller_id=donor.id)

        stranger = make_user('stranger')
        with pytest.raises(NotFound):
            handler.respond(blood_request.pk, stranger.pk, 'accepted', caller_id=stranger.pk)

    def test_reconcile_failure_keeps_response(self, setup, fake_directory):
        _, blood_request, donor = setup
        broken = NotificationStore()
        handler = ResponseHandler(directory=fake_directory, notification_store=broken)

        with mock.patch.object(broken, 'get_or_create', side_effect=DatabaseError('down')):
            result = handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)

        assert result.reconciled is False
        assert result.message == ACCEPTED_MESSAGE
        assert blood_request.donor_responses.get().response == 'accepted'

    def test_retry_reconcile_fills_in_missing_notifications(self, setup, fake_directory):
        handler, blood_request, donor = setup
        broken = NotificationStore()
        failing = ResponseHandler(directory=fake_directory, notification_store=broken)
        with mock.patch.object(broken, 'get_or_create', side_effect=DatabaseError('down')):
            failing.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)
        assert not Notification.objects.filter(type=Notification.TYPE_DONOR_ACCEPTED).exists()

        handler.retry_reconcile(blood_request.pk, donor.id)
        handler.retry_reconcile(blood_request.pk, donor.id)

        assert Notification.objects.filter(type=Notification.TYPE_DONOR_ACCEPTED, donor_id=donor.id).count() == 1
        assert Notification.objects.filter(type=Notification.TYPE_DONATION_REMINDER, user_id=donor.id).count() == 1
        assert not Notification.objects.filter(
            blood_request=blood_request, user_id=donor.id, type=Notification.TYPE_BLOOD_REQUEST
        ).exists()

    def test_repeated_acceptance_notifies_once(self, setup):
        handler, blood_request, donor = setup

        handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)
        handler.respond(blood_request.pk, donor.id, 'accepted', caller_id=donor.id)

        assert Notification.objects.filter(type=Notification.TYPE_DONOR_ACCEPTED).count() == 1
        assert Notification.objects.filter(type=Notification.TYPE_DONATION_REMINDER).count() == 1

    def test_retry_reconcile_without_response(self, setup):
        handler, blood_request, donor = setup
        with pytest.raises(NotFound):
            handler.retry_reconcile(blood_request.pk, donor.id)
        with pytest.raises(NotFound):
            handler.retry_reconcile(12345, donor.id)


# ------------------------------------------
# Housekeeping
# ------------------------------------------
class TestHousekeeping:

    def test_prunes_only_old_finished_requests(self, request_store, blood_request_data):
        completed = age(request_store.create(**blood_request_data), 10)
        request_store.update_status(completed.pk, 'completed')
        active = age(request_store.create(**blood_request_data), 10)
        cancelled = age(request_store.create(**blood_request_data), 10)
        request_store.update_status(cancelled.pk, 'cancelled')
        recent = request_store.create(**blood_request_data)
        request_store.update_status(recent.pk, 'rejected')

        deleted = prune_stale_requests(request_store.list(), max_age_days=7)

        assert deleted == 1
        assert not BloodRequest.objects.filter(pk=completed.pk).exists()
        assert BloodRequest.objects.filter(pk__in=[active.pk, cancelled.pk, recent.pk]).count() == 3

    def test_idempotent(self, request_store, blood_request_data):
        old = age(request_store.create(**blood_request_data), 30)
        request_store.update_status(old.pk, 'rejected')
        snapshot = request_store.list()

        assert prune_stale_requests(snapshot, max_age_days=7) == 1
        assert prune_stale_requests(snapshot, max_age_days=7) == 0

    def test_default_age_from_settings(self, request_store, blood_request_data, settings):
        settings.BLOOD_ALERT = dict(settings.BLOOD_ALERT, STALE_REQUEST_MAX_AGE_DAYS=30)
        old = age(request_store.create(**blood_request_data), 10)
        request_store.update_status(old.pk, 'completed')

        assert prune_stale_requests(request_store.list()) == 0

    def test_pruning_keeps_notifications(self, request_store, blood_request_data, fake_directory):
        old = request_store.create(**blood_request_data)
        NotificationDispatcher(directory=fake_directory).dispatch(old)
        request_store.update_status(old.pk, 'completed')
        age(old, 10)

        prune_stale_requests(request_store.list(), max_age_days=7)

        assert Notification.objects.count() == 2
        assert not Notification.objects.exclude(blood_request=None).exists()


# ------------------------------------------
# Services and tasks
# ------------------------------------------
class TestServices:

    def test_submit_notifies_compatible_donors(self, blood_request_data, fake_directory):
        dispatcher = NotificationDispatcher(directory=fake_directory)

        result = services.submit_blood_request(blood_request_data, dispatcher=dispatcher)

        assert result.notifications_sent == 2
        assert result.compatible_donors_found == 2
        assert result.dispatch_error is None
        assert 'notified' in result.message

    def test_submit_survives_dispatch_failure(self, blood_request_data, fake_directory):
        notifications = NotificationStore()
        dispatcher = NotificationDispatcher(directory=fake_directory, notification_store=notifications)

        with mock.patch.object(notifications, 'create_batch', side_effect=DatabaseError('down')):
            result = services.submit_blood_request(blood_request_data, dispatcher=dispatcher)

        assert isinstance(result.dispatch_error, DispatchPartialFailure)
        assert result.notifications_sent == 0
        assert BloodRequest.objects.filter(pk=result.id, status='active').exists()
        assert not Notification.objects.exists()
        assert 'retried' in result.message

    def test_submit_survives_directory_failure(self, blood_request_data):
        broken = mock.Mock()
        broken.find_active_eligible_donors.side_effect = DatabaseError('down')

        result = services.submit_blood_request(blood_request_data, dispatcher=NotificationDispatcher(directory=broken))

        assert isinstance(result.dispatch_error, DispatchPartialFailure)
        assert BloodRequest.objects.filter(pk=result.id, status='active').count() == 1

    def test_submit_stamps_requester(self, blood_request_data, fake_directory):
        requester = fake_directory.donors[0]
        dispatcher = NotificationDispatcher(directory=fake_directory)

        result = services.submit_blood_request(blood_request_data, requester_id=requester.id, dispatcher=dispatcher)

        assert BloodRequest.objects.get(pk=result.id).requester_id == requester.id
        assert result.compatible_donors_found == 1

    def test_redispatch_skips_already_notified(self, blood_request_data, fake_directory):
        dispatcher = NotificationDispatcher(directory=fake_directory)
        result = services.submit_blood_request(blood_request_data, dispatcher=dispatcher)

        again = services.redispatch_blood_request(result.id, dispatcher=dispatcher)

        assert again.notifications_sent == 0
        assert again.compatible_donors == 2
        assert Notification.objects.count() == 2

    def test_redispatch_refuses_finished_request(self, blood_request_data, fake_directory):
        dispatcher = NotificationDispatcher(directory=fake_directory)
        result = services.submit_blood_request(blood_request_data, dispatcher=dispatcher)
        services.update_blood_request_status(result.id, 'cancelled')

        with pytest.raises(InvalidStatusTransition):
            services.redispatch_blood_request(result.id, dispatcher=dispatcher)


class TestTasks:

    def test_dispatch_task_reports_counts(self, blood_request_data, make_donor):
        make_donor('olga', 'O-')
        blood_request = RequestStore().create(**blood_request_data)

        message = dispatch_blood_request_notifications(blood_request.pk)

        assert message.startswith('Notified 1 of 1')
        assert Notification.objects.filter(blood_request=blood_request).count() == 1

    def test_dispatch_task_raises_for_retry(self, blood_request_data):
        blood_request = RequestStore().create(**blood_request_data)
        failed = mock.Mock(error=DispatchPartialFailure(), notifications_sent=0, compatible_donors=3)

        with mock.patch('bloodrequests.tasks.redispatch_blood_request', return_value=failed):
            with pytest.raises(DispatchPartialFailure):
                dispatch_blood_request_notifications(blood_request.pk)

    def test_dispatch_task_missing_request(self):
        assert 'not found' in dispatch_blood_request_notifications(999)

    def test_prune_task(self, request_store, blood_request_data):
        old = age(request_store.create(**blood_request_data), 10)
        request_store.update_status(old.pk, 'completed')

        assert prune_stale_blood_requests(7) == 'Pruned 1 blood request(s)'

    def test_reconcile_task_creates_acceptance_notifications(self, request_store, blood_request_data, fake_directory):
        olga = fake_directory.donors[0]
        blood_request = request_store.create(**blood_request_data)
        request_store.upsert_donor_response(
            blood_request.pk, olga.id, donor_name='Olga', response='accepted', contact_shared=True
        )

        message = reconcile_donor_response_notifications(blood_request.pk, olga.id)
        reconcile_donor_response_notifications(blood_request.pk, olga.id)

        assert message.startswith('Reconciled')
        assert Notification.objects.filter(type=Notification.TYPE_DONOR_ACCEPTED, donor_id=olga.id).count() == 1
        assert Notification.objects.filter(type=Notification.TYPE_DONATION_REMINDER, user_id=olga.id).count() == 1

    def test_reconcile_task_missing_response(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)
        assert reconcile_donor_response_notifications(blood_request.pk, 999).startswith('Skipped')

    def test_reconcile_task_raises_for_retry(self):
        with mock.patch('bloodrequests.tasks.reconcile_donor_response', side_effect=DatabaseError('down')):
            with pytest.raises(DatabaseError):
                reconcile_donor_response_notifications(1, 2)


# ------------------------------------------
# Admin
# ------------------------------------------
class TestBloodRequestAdmin:

    @pytest.fixture
    def request_admin(self):
        return BloodRequestAdmin(BloodRequest, admin.site)

    @pytest.fixture
    def admin_request(self, admin_user):
        request = RequestFactory().get('/admin/')
        request.user = admin_user
        return request

    def test_change_form_cannot_edit_status(self, request_admin, admin_request, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)
        request_store.update_status(blood_request.pk, 'completed', fulfilled=True)

        form_class = request_admin.get_form(admin_request, BloodRequest.objects.get(pk=blood_request.pk))

        assert 'status' not in form_class.base_fields
        assert 'fulfilled' not in form_class.base_fields
        assert 'patient_name' in form_class.base_fields

    def test_status_actions_keep_lifecycle(self, request_admin, admin_request, request_store, blood_request_data):
        done = request_store.create(**blood_request_data)
        request_store.update_status(done.pk, 'completed', fulfilled=True)
        active = request_store.create(**blood_request_data)

        with mock.patch.object(request_admin, 'message_user') as message_user:
            request_admin.mark_cancelled(admin_request, BloodRequest.objects.all())

        assert BloodRequest.objects.get(pk=done.pk).status == 'completed'
        assert BloodRequest.objects.get(pk=active.pk).status == 'cancelled'
        message_user.assert_any_call(admin_request, '1 request(s) marked cancelled.')

    def test_donor_responses_are_read_only(self, admin_request):
        response_admin = DonorResponseAdmin(DonorResponse, admin.site)

        assert response_admin.has_add_permission(admin_request) is False
        assert response_admin.has_change_permission(admin_request) is False
