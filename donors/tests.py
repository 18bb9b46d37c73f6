from pathlib import Path

import pandas as pd
import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from accounts.models import CustomUser
from bloodalert.exceptions import NotFound
from donors.directory import DonorDirectory
from donors.models import DonorProfile


@pytest.mark.django_db
class TestDonorDirectory:

    def test_filters_by_group_and_eligibility(self, make_donor):
        o_neg = make_donor('olga', 'O-')
        make_donor('ben', 'B+')
        a_pos = make_donor('anna', 'A+')
        inactive = make_donor('ivan', 'A+')
        inactive.is_active = False
        inactive.save()
        make_donor('deferred', 'O+', can_donate=False)
        make_donor('unknown', '')

        donors = DonorDirectory().find_active_eligible_donors({'A+', 'A-', 'O+', 'O-'})

        assert {d.id for d in donors} == {o_neg.pk, a_pos.pk}

    def test_donor_shape_is_normalized(self, make_user):
        user = make_user('hari', first_name='Hari', last_name='Thapa')
        DonorProfile.objects.create(user=user, blood_group='B-', phone='')

        donor = DonorDirectory().get_by_id(user.pk)

        assert donor.id == user.pk
        assert donor.name == 'Hari Thapa'
        assert donor.phone == ''
        assert donor.blood_group == 'B-'

    def test_name_falls_back_to_username(self, make_user):
        user = make_user('gita')
        DonorProfile.objects.create(user=user, blood_group='O+')

        assert DonorDirectory().get_by_id(user.pk).name == 'gita'

    def test_get_missing_donor(self, make_user):
        user = make_user('no_profile')
        with pytest.raises(NotFound):
            DonorDirectory().get_by_id(user.pk)
        with pytest.raises(NotFound):
            DonorDirectory().get_by_id('abc')


@pytest.mark.django_db
class TestImportDonors:

    def write_csv(self, tmp_path, rows):
        path = Path(tmp_path) / 'donors.csv'
        pd.DataFrame(rows).to_csv(path, index=False)
        return path

    def test_creates_and_updates_donors(self, tmp_path):
        path = self.write_csv(tmp_path, [
            {'name': 'Sita Rai', 'email': 'sita@example.com', 'phone_number': '9801', 'blood_group': ' o- ', 'city': 'Pokhara'},
            {'name': 'Bad Group', 'email': 'bad@example.com', 'phone_number': '9802', 'blood_group': 'Z+', 'city': ''},
        ])

        call_command('import_donors', str(path))

        profile = DonorProfile.objects.get(user__email='sita@example.com')
        assert profile.blood_group == 'O-'
        assert profile.full_name == 'Sita Rai'
        assert profile.city == 'Pokhara'
        assert profile.can_donate is True
        assert not profile.user.has_usable_password()
        assert not CustomUser.objects.filter(email='bad@example.com').exists()

        path = self.write_csv(tmp_path, [
            {'name': 'Sita Rai', 'email': 'sita@example.com', 'phone_number': '9899', 'blood_group': 'O-', 'city': 'Pokhara'},
        ])
        call_command('import_donors', str(path))

        assert DonorProfile.objects.count() == 1
        assert DonorProfile.objects.get().phone == '9899'

    def test_dry_run_saves_nothing(self, tmp_path):
        path = self.write_csv(tmp_path, [
            {'full_name': 'Sita Rai', 'email': 'sita@example.com', 'blood_group': 'A+'},
        ])

        call_command('import_donors', str(path), '--dry-run')

        assert not DonorProfile.objects.exists()

    def test_missing_file(self, tmp_path):
        with pytest.raises(CommandError):
            call_command('import_donors', str(Path(tmp_path) / 'nope.csv'))

    def test_imported_donors_are_matchable_by_default(self, tmp_path):
        path = self.write_csv(tmp_path, [
            {'name': 'Sita', 'email': 'sita@example.com', 'blood_group': 'O-'},
        ])

        call_command('import_donors', str(path))

        assert DonorProfile.objects.get().can_donate is True
        matched = DonorDirectory().find_active_eligible_donors({'O-'})
        assert [d.email for d in matched] == ['sita@example.com']

    def test_explicit_can_donate_column(self, tmp_path):
        path = self.write_csv(tmp_path, [
            {'name': 'Sita', 'email': 'sita@example.com', 'blood_group': 'O-', 'can_donate': 'no'},
            {'name': 'Ram', 'email': 'ram@example.com', 'blood_group': 'A+', 'can_donate': 'yes'},
            {'name': 'Hari', 'email': 'hari@example.com', 'blood_group': 'B+', 'can_donate': ''},
        ])

        call_command('import_donors', str(path))

        flags = dict(DonorProfile.objects.values_list('user__email', 'can_donate'))
        assert flags == {'sita@example.com': False, 'ram@example.com': True, 'hari@example.com': True}

    def test_bad_donation_count_skips_only_that_row(self, tmp_path):
        path = self.write_csv(tmp_path, [
            {'name': 'Sita', 'email': 'sita@example.com', 'blood_group': 'O-', 'donation_count': 'many'},
            {'name': 'Ram', 'email': 'ram@example.com', 'blood_group': 'A+', 'donation_count': 4},
        ])

        call_command('import_donors', str(path))

        assert list(DonorProfile.objects.values_list('user__email', 'donation_count')) == [('ram@example.com', 4)]
