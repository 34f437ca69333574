import hmac

from django.conf import settings
from rest_framework import exceptions
from rest_framework.authentication import BasicAuthentication


class PinAdmin:
    """Stand-in user for a request that presented the admin PIN."""

    is_authenticated = True
    is_anonymous = False
    username = 'admin'

    def __str__(self):
        return self.username


class AdminPinAuthentication(BasicAuthentication):
    """HTTP Basic auth where only the password matters: it must equal ADMIN_PIN."""

    www_authenticate_realm = 'Admin'

    def authenticate_credentials(self, userid, password, request=None):
        if hmac.compare_digest(password.encode('utf-8'), str(settings.ADMIN_PIN).encode('utf-8')):
            return (PinAdmin(), None)
        raise exceptions.AuthenticationFailed('Unauthorized')
