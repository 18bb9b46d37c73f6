"""
Blood Group Compatibility Helper
Determines which donor blood groups can give to which recipient blood groups,
and scores donors so the best matches are contacted first.
"""
from bloodalert.exceptions import InvalidBloodGroup

BLOOD_GROUPS = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')

BLOOD_GROUP_CHOICES = [(group, group) for group in BLOOD_GROUPS]

UNIVERSAL_DONOR = 'O-'
UNIVERSAL_RECIPIENT = 'AB+'

# Recipient blood group -> donor blood groups it can receive from
COMPATIBILITY = {
    'A+': frozenset({'A+', 'A-', 'O+', 'O-'}),
    'A-': frozenset({'A-', 'O-'}),
    'B+': frozenset({'B+', 'B-', 'O+', 'O-'}),
    'B-': frozenset({'B-', 'O-'}),
    'AB+': frozenset(BLOOD_GROUPS),  # Universal recipient
    'AB-': frozenset({'A-', 'B-', 'AB-', 'O-'}),
    'O+': frozenset({'O+', 'O-'}),
    'O-': frozenset({'O-'}),  # Universal donor can only receive O-
}

URGENCY_PRIORITY = {
    'critical': 3,
    'urgent': 2,
    'normal': 1,
}


def is_valid_blood_group(blood_group):
    return blood_group in COMPATIBILITY


def get_compatible_donors(recipient_blood_group):
    """
    Get the blood groups that can donate to a recipient

    Args:
        recipient_blood_group: Recipient's blood group (e.g., 'A+')

    Returns:
        frozenset of compatible donor blood groups

    Raises:
        InvalidBloodGroup: if the group is not one of the eight known groups
    """
    try:
        return COMPATIBILITY[recipient_blood_group]
    except (KeyError, TypeError):
        raise InvalidBloodGroup(recipient_blood_group) from None


def is_compatible(donor_blood_group, recipient_blood_group):
    """
    Check if donor blood group is compatible with recipient

    Unknown groups on either side count as incompatible instead of raising.
    """
    try:
        return donor_blood_group in get_compatible_donors(recipient_blood_group)
    except InvalidBloodGroup:
        return False


def get_compatible_recipients(donor_blood_group):
    """
    Get list of blood groups that can receive from donor, in BLOOD_GROUPS order
    """
    return [
        recipient for recipient in BLOOD_GROUPS
        if donor_blood_group in COMPATIBILITY[recipient]
    ]


def get_urgency_priority(urgency_level):
    return URGENCY_PRIORITY.get(urgency_level, 1)


def calculate_compatibility_score(donor_blood_group, recipient_blood_group, urgency_level='normal'):
    """
    Score a donor for a request (higher = better match)

    Scoring:
    - 0 if not compatible
    - base 1
    - +2 exact blood group match
    - +1 universal donor (O-) on a critical request
    - total multiplied by urgency weight (critical 3, urgent 2, normal 1)
    """
    if not is_compatible(donor_blood_group, recipient_blood_group):
        return 0

    score = 1

    if donor_blood_group == recipient_blood_group:
        score += 2

    if donor_blood_group == UNIVERSAL_DONOR and urgency_level == 'critical':
        score += 1

    return score * get_urgency_priority(urgency_level)


def sort_donors_by_compatibility(donors, recipient_blood_group, urgency_level='normal'):
    """
    Rank donors for a request

    Args:
        donors: iterable of objects with a `blood_group` attribute
        recipient_blood_group: blood group needed
        urgency_level: request urgency

    Returns:
        List of (donor, score) tuples, best first. Incompatible donors are
        dropped; equal scores keep their input order.
    """
    scored = []
    for donor in donors:
        score = calculate_compatibility_score(donor.blood_group, recipient_blood_group, urgency_level)
        if score > 0:
            scored.append((donor, score))

    # list.sort is stable, so ties stay in input order
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored
