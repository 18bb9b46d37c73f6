import pytest

from algorithms.blood_compatibility import (
    BLOOD_GROUPS,
    calculate_compatibility_score,
    get_compatible_donors,
    get_compatible_recipients,
    is_compatible,
    sort_donors_by_compatibility,
)
from bloodalert.exceptions import InvalidBloodGroup
from donors.directory import Donor


def donor(donor_id, blood_group):
    return Donor(id=donor_id, blood_group=blood_group, name=f'Donor {donor_id}', email='', phone='')


@pytest.mark.parametrize('recipient', BLOOD_GROUPS)
def test_o_negative_gives_to_everyone(recipient):
    assert 'O-' in get_compatible_donors(recipient)


def test_ab_positive_receives_from_everyone():
    assert get_compatible_donors('AB+') == set(BLOOD_GROUPS)


def test_o_negative_receives_only_o_negative():
    assert get_compatible_donors('O-') == {'O-'}


def test_a_positive_donor_groups():
    assert get_compatible_donors('A+') == {'A+', 'A-', 'O+', 'O-'}


@pytest.mark.parametrize('bad', ['X+', '', None, 'a+'])
def test_unknown_recipient_group_raises(bad):
    with pytest.raises(InvalidBloodGroup):
        get_compatible_donors(bad)


def test_is_compatible_never_raises():
    assert is_compatible('O-', 'X+') is False
    assert is_compatible('X+', 'A+') is False
    assert is_compatible('O+', 'A+') is True


def test_compatible_recipients_of_o_negative():
    assert get_compatible_recipients('O-') == list(BLOOD_GROUPS)
    assert get_compatible_recipients('AB+') == ['AB+']


@pytest.mark.parametrize('donor_group', BLOOD_GROUPS)
@pytest.mark.parametrize('recipient_group', BLOOD_GROUPS)
def test_zero_score_means_incompatible(donor_group, recipient_group):
    score = calculate_compatibility_score(donor_group, recipient_group, 'urgent')
    assert (score == 0) == (not is_compatible(donor_group, recipient_group))


@pytest.mark.parametrize('group', BLOOD_GROUPS)
def test_urgency_raises_score(group):
    critical = calculate_compatibility_score(group, group, 'critical')
    urgent = calculate_compatibility_score(group, group, 'urgent')
    normal = calculate_compatibility_score(group, group, 'normal')
    assert critical > urgent > normal


def test_score_values():
    # exact match: (1 + 2) * weight
    assert calculate_compatibility_score('A+', 'A+', 'normal') == 3
    assert calculate_compatibility_score('O+', 'A+', 'urgent') == 2
    # universal donor bonus only on critical requests
    assert calculate_compatibility_score('O-', 'A+', 'critical') == 6
    assert calculate_compatibility_score('O-', 'A+', 'urgent') == 2
    assert calculate_compatibility_score('B+', 'A+', 'critical') == 0


def test_unknown_urgency_counts_as_normal():
    assert calculate_compatibility_score('A+', 'A+', 'whenever') == 3


def test_sort_drops_incompatible_and_ranks():
    donors = [donor(1, 'O-'), donor(2, 'B+'), donor(3, 'A+')]

    ranked = sort_donors_by_compatibility(donors, 'A+', 'normal')

    assert [(d.id, score) for d, score in ranked] == [(3, 3), (1, 1)]


def test_sort_keeps_input_order_on_ties():
    donors = [donor(1, 'O+'), donor(2, 'A-'), donor(3, 'O+')]

    ranked = sort_donors_by_compatibility(donors, 'A+', 'urgent')

    assert [d.id for d, _ in ranked] == [1, 2, 3]
