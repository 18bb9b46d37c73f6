import pytest

from accounts.models import CustomUser
from bloodalert.exceptions import NotFound
from bloodrequests.store import RequestStore
from donors.directory import Donor
from donors.models import DonorProfile


class FakeDonorDirectory:
    """In-memory donor directory with the same interface as DonorDirectory"""

    def __init__(self, donors=()):
        self.donors = list(donors)

    def find_active_eligible_donors(self, blood_groups):
        return [
            d for d in self.donors
            if d.blood_group and d.blood_group in blood_groups and d.is_active and d.can_donate is not False
        ]

    def get_by_id(self, donor_id):
        for donor in self.donors:
            if str(donor.id) == str(donor_id):
                return donor
        raise NotFound(f"Donor {donor_id} not found")


@pytest.fixture
def make_user(db):
    def _make_user(username, **extra):
        extra.setdefault('email', f'{username}@example.com')
        return CustomUser.objects.create_user(username=username, password='pass12345', **extra)
    return _make_user


@pytest.fixture
def make_donor(make_user):
    """Create a donor account with a profile and return the user."""
    def _make_donor(username, blood_group, phone='9800000000', **profile_fields):
        user = make_user(username, user_type='donor')
        DonorProfile.objects.create(
            user=user,
            full_name=profile_fields.pop('full_name', username.title()),
            phone=phone,
            blood_group=blood_group,
            **profile_fields,
        )
        return user
    return _make_donor


@pytest.fixture
def admin_user(make_user):
    return make_user('admin', is_staff=True, is_superuser=True, user_type='admin')


@pytest.fixture
def fake_directory(make_user):
    """
    Donors 1..3 from the A+ scenario, backed by real users so foreign keys
    hold: O-, B+ and A+.
    """
    donors = []
    for username, blood_group in [('olga', 'O-'), ('ben', 'B+'), ('anna', 'A+')]:
        user = make_user(username)
        donors.append(Donor(
            id=user.pk,
            blood_group=blood_group,
            name=username.title(),
            email=user.email,
            phone='9800000000',
        ))
    return FakeDonorDirectory(donors)


@pytest.fixture
def request_store():
    return RequestStore()


@pytest.fixture
def blood_request_data():
    return {
        'patient_name': 'Ram Bahadur',
        'blood_group': 'A+',
        'units_required': 2,
        'urgency_level': 'urgent',
        'hospital_name': 'Bir Hospital',
        'city': 'Kathmandu',
        'contact_person': 'Sita',
        'contact_phone': '9811111111',
    }
