from unittest import mock

import pytest
from django.db import DatabaseError

from bloodalert.exceptions import DispatchPartialFailure, InvalidBloodGroup, NotFound
from bloodrequests.models import BloodRequest
from conftest import FakeDonorDirectory
from donors.directory import Donor
from notifications import messages
from notifications.dispatcher import NotificationDispatcher
from notifications.models import Notification
from notifications.store import NotificationStore

pytestmark = pytest.mark.django_db


class TestNotificationDispatcher:

    def test_notifies_only_compatible_donors(self, request_store, blood_request_data, fake_directory):
        olga, ben, anna = fake_directory.donors
        blood_request = request_store.create(**blood_request_data)

        result = NotificationDispatcher(directory=fake_directory).dispatch(blood_request)

        assert result.ok
        assert result.notifications_sent == 2
        assert result.compatible_donors == 2
        notified = Notification.objects.filter(blood_request=blood_request)
        assert set(notified.values_list('user_id', flat=True)) == {olga.id, anna.id}
        assert not notified.filter(user_id=ben.id).exists()

    def test_notification_shape(self, request_store, blood_request_data, fake_directory):
        _, _, anna = fake_directory.donors
        blood_request = request_store.create(**blood_request_data)

        NotificationDispatcher(directory=fake_directory).dispatch(blood_request)

        notification = Notification.objects.get(user_id=anna.id)
        assert notification.type == Notification.TYPE_BLOOD_REQUEST
        assert notification.is_global is False
        assert notification.read is False
        assert notification.responded is False
        assert notification.donor_blood_group == 'A+'
        assert notification.recipient_blood_group == 'A+'
        # Exact match ranks first
        assert notification.priority_order == 1
        assert 'EXACT MATCH' in notification.message
        assert 'URGENT: Response needed within 24-48 hours' in notification.message

    def test_requester_is_never_notified(self, request_store, blood_request_data, fake_directory):
        olga = fake_directory.donors[0]
        blood_request = request_store.create(requester_id=olga.id, **dict(blood_request_data, blood_group='AB+'))

        result = NotificationDispatcher(directory=fake_directory).dispatch(blood_request)

        recipients = set(Notification.objects.values_list('user_id', flat=True))
        assert olga.id not in recipients
        assert result.compatible_donors == 2

    def test_ignores_ineligible_donors_from_directory(self, request_store, blood_request_data, fake_directory):
        olga, ben, anna = fake_directory.donors
        leaky = mock.Mock()
        leaky.find_active_eligible_donors.return_value = [
            Donor(id=olga.id, blood_group='O-', name='Olga', email='', phone='', can_donate=False),
            Donor(id=ben.id, blood_group='B+', name='Ben', email='', phone=''),
            Donor(id=anna.id, blood_group='A+', name='Anna', email='', phone=''),
        ]
        blood_request = request_store.create(**blood_request_data)

        result = NotificationDispatcher(directory=leaky).dispatch(blood_request)

        assert result.compatible_donors == 1
        assert list(Notification.objects.values_list('user_id', flat=True)) == [anna.id]

    def test_batch_failure_is_reported(self, request_store, blood_request_data, fake_directory):
        notifications = NotificationStore()
        blood_request = request_store.create(**blood_request_data)
        dispatcher = NotificationDispatcher(directory=fake_directory, notification_store=notifications)

        with mock.patch.object(notifications, 'create_batch', side_effect=DatabaseError('down')):
            result = dispatcher.dispatch(blood_request)

        assert not result.ok
        assert isinstance(result.error, DispatchPartialFailure)
        assert result.notifications_sent == 0
        assert BloodRequest.objects.filter(pk=blood_request.pk).exists()

    def test_directory_failure_is_reported(self, request_store, blood_request_data):
        broken = mock.Mock()
        broken.find_active_eligible_donors.side_effect = DatabaseError('down')
        blood_request = request_store.create(**blood_request_data)

        result = NotificationDispatcher(directory=broken).dispatch(blood_request)

        assert isinstance(result.error, DispatchPartialFailure)
        assert (result.notifications_sent, result.compatible_donors) == (0, 0)

    def test_dedupe_read_failure_is_reported(self, request_store, blood_request_data, fake_directory):
        notifications = NotificationStore()
        blood_request = request_store.create(**blood_request_data)
        dispatcher = NotificationDispatcher(directory=fake_directory, notification_store=notifications)

        with mock.patch.object(notifications, 'notified_user_ids', side_effect=DatabaseError('down')):
            result = dispatcher.dispatch(blood_request)

        assert isinstance(result.error, DispatchPartialFailure)
        assert result.compatible_donors == 2
        assert not Notification.objects.exists()

    def test_dedupes_donors_who_already_responded(self, request_store, blood_request_data, fake_directory):
        olga = fake_directory.donors[0]
        blood_request = request_store.create(**blood_request_data)
        request_store.upsert_donor_response(blood_request.pk, olga.id, donor_name='Olga', response='declined')

        result = NotificationDispatcher(directory=fake_directory).dispatch(blood_request)

        assert result.notifications_sent == 1
        assert not Notification.objects.filter(user_id=olga.id).exists()

    def test_invalid_request_group(self, blood_request_data, fake_directory):
        blood_request = BloodRequest(**dict(blood_request_data, blood_group='X+'))
        with pytest.raises(InvalidBloodGroup):
            NotificationDispatcher(directory=fake_directory).dispatch(blood_request)

    def test_no_donors(self, request_store, blood_request_data):
        blood_request = request_store.create(**blood_request_data)

        result = NotificationDispatcher(directory=FakeDonorDirectory()).dispatch(blood_request)

        assert result.ok
        assert (result.notifications_sent, result.compatible_donors) == (0, 0)


class TestMessages:

    def request(self, urgency):
        return BloodRequest(
            patient_name='Maya', blood_group='B+', units_required=1,
            urgency_level=urgency, hospital_name='Teaching Hospital', city='',
        )

    @pytest.mark.parametrize('urgency,call_to_action', [
        ('critical', 'CRITICAL: Immediate response needed!'),
        ('urgent', 'URGENT: Response needed within 24-48 hours'),
        ('normal', 'Your donation could save a life!'),
    ])
    def test_call_to_action(self, urgency, call_to_action):
        donor = Donor(id=1, blood_group='O-', name='Olga', email='', phone='')
        text = messages.blood_request_message(self.request(urgency), donor)
        assert text.endswith(call_to_action)
        assert 'COMPATIBLE' in text
        assert 'Your Blood Group: O-' in text

    def test_reminder_skips_empty_location(self):
        text = messages.donation_reminder_message(self.request('normal'))
        assert 'Location' not in text
        assert 'Teaching Hospital' in text


class TestNotificationStore:

    def test_inbox_shows_acceptances_only_to_requester(self, make_user, request_store, blood_request_data):
        store = NotificationStore()
        donor = make_user('donor')
        other = make_user('other')
        requester = make_user('requester')
        blood_request = request_store.create(requester_id=requester.pk, **blood_request_data)
        own = store.create(user=donor, type='donation_reminder', title='Mine', message='m')
        store.create(user=other, type='donation_reminder', title='Theirs', message='m')
        accepted = store.create(
            is_global=True, blood_request=blood_request, type='donor_accepted', title='Found', message='m',
            contact_details={'donor_phone': '9801'},
        )
        store.create(is_global=True, type='donor_accepted', title='Public form', message='m')

        assert {n.pk for n in store.list_for_user(donor)} == {own.pk}
        assert {n.pk for n in store.list_for_user(requester)} == {accepted.pk}
        with pytest.raises(NotFound):
            store.mark_read(accepted.pk, donor)

    def test_staff_sees_everything(self, make_user, admin_user):
        store = NotificationStore()
        store.create(user=make_user('donor'), type='donation_reminder', title='t', message='m')
        store.create(is_global=True, type='donor_accepted', title='t', message='m')

        assert store.list_for_user(admin_user).count() == 2

    def test_mark_read(self, make_user):
        store = NotificationStore()
        donor = make_user('donor')
        other = make_user('other')
        notification = store.create(user=donor, type='donation_reminder', title='t', message='m')

        with pytest.raises(NotFound):
            store.mark_read(notification.pk, other)

        marked = store.mark_read(notification.pk, donor)
        assert marked.read is True
        assert marked.read_at is not None

    def test_mark_all_read(self, make_user):
        store = NotificationStore()
        donor = make_user('donor')
        for _ in range(3):
            store.create(user=donor, type='donation_reminder', title='t', message='m')

        assert store.mark_all_read(donor) == 3
        assert store.mark_all_read(donor) == 0

    def test_mark_responded_and_delete_only_touch_prompts(self, request_store, blood_request_data, make_user):
        store = NotificationStore()
        donor = make_user('donor')
        blood_request = request_store.create(**blood_request_data)
        store.create(user=donor, blood_request=blood_request, type='blood_request', title='t', message='m')
        store.create(user=donor, blood_request=blood_request, type='donation_reminder', title='t', message='m')

        assert store.mark_responded(blood_request.pk, donor.pk) == 1
        assert store.delete_by_request_and_user(blood_request.pk, donor.pk) == 1
        assert list(Notification.objects.values_list('type', flat=True)) == ['donation_reminder']
