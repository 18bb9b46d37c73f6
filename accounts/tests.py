import pytest
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory

from accounts.identity import current_user_id


@pytest.mark.django_db
def test_current_user_id(make_user):
    request = RequestFactory().get('/')
    request.user = make_user('hari')
    assert current_user_id(request) == request.user.pk


def test_anonymous_has_no_id():
    request = RequestFactory().get('/')
    assert current_user_id(request) is None
    request.user = AnonymousUser()
    assert current_user_id(request) is None
