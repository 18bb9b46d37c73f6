"""
Who is calling: the one thing the matching core needs from authentication.
"""


def current_user_id(request):
    """Return the authenticated user's id, or None for anonymous callers."""
    user = getattr(request, 'user', None)
    if user is None or not user.is_authenticated:
        return None
    return user.pk
