"""
Donor Directory

Read-only view of registered donors used by the matching core. Database rows
are normalized into `Donor` here so nothing downstream has to care about
missing names or phone numbers.
"""
import logging
from dataclasses import dataclass

from bloodalert.exceptions import NotFound
from donors.models import DonorProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Donor:
    id: int
    blood_group: str
    name: str
    email: str
    phone: str
    is_active: bool = True
    can_donate: bool = True


def donor_from_profile(profile):
    user = profile.user
    name = profile.full_name or user.get_full_name() or user.username
    return Donor(
        id=user.pk,
        blood_group=profile.blood_group,
        name=name,
        email=user.email or '',
        phone=profile.phone or '',
        is_active=user.is_active,
        can_donate=profile.can_donate,
    )


class DonorDirectory:
    """Django ORM backed directory. Donor ids are user ids."""

    def find_active_eligible_donors(self, blood_groups):
        """
        Donors whose blood group is in `blood_groups`, whose account is
        active and who have not been marked unable to donate.
        """
        profiles = (
            DonorProfile.objects
            .select_related('user')
            .filter(
                blood_group__in=list(blood_groups),
                user__is_active=True,
                can_donate=True,
            )
            .exclude(blood_group='')
            .order_by('created_at', 'pk')
        )
        donors = [donor_from_profile(p) for p in profiles]
        logger.debug(f"{len(donors)} active eligible donors in groups {sorted(blood_groups)}")
        return donors

    def get_by_id(self, donor_id):
        try:
            profile = DonorProfile.objects.select_related('user').get(user_id=donor_id)
        except (DonorProfile.DoesNotExist, ValueError, TypeError):
            raise NotFound(f"Donor {donor_id} not found") from None
        return donor_from_profile(profile)
