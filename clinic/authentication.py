"""
Token authentication for the API.

Kept apart from the auth views so Django REST framework can import the
class from settings without pulling view modules in.
"""
from __future__ import annotations

from rest_framework import authentication
from rest_framework.exceptions import AuthenticationFailed


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token auth (``Authorization: Token <key>``) that refuses
    inactive accounts and preloads the user's branch scope."""

    keyword = 'Token'

    def authenticate_credentials(self, key):
        model = self.get_model()
        try:
            token = model.objects.select_related('user', 'user__organization', 'user__branch').get(key=key)
        except model.DoesNotExist:
            raise AuthenticationFailed('Invalid token.')
        if not token.user.is_active:
            raise AuthenticationFailed('User inactive or deleted.')
        return (token.user, token)
