"""
Token authentication used by the API.

Kept apart from the login views so that DRF can import the
authentication class during start-up without pulling in views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """``Authorization: Token <key>`` authentication."""

    keyword = 'Token'
