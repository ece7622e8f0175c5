"""
Bearer session tokens for DRF views.
"""
from typing import Optional, Tuple

from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission

from artmarket.auth import SessionClaims
from artmarket.errors import AuthError
from artmarket.services import build_token_codec


class SessionUser:
    """Request user backed by verified session claims."""

    is_authenticated = True
    is_anonymous = False

    def __init__(self, claims: SessionClaims):
        self.claims = claims
        self.id = claims.user_id
        self.wallet_address = claims.wallet_address
        self.role = claims.role

    def __str__(self) -> str:
        return self.wallet_address


class SessionTokenAuthentication(BaseAuthentication):
    keyword = 'Bearer'

    def authenticate(self, request) -> Optional[Tuple[SessionUser, str]]:
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise AuthenticationFailed('No token provided', code='TOKEN_INVALID')

        token = header[1].decode('utf-8', errors='replace')
        try:
            claims = build_token_codec().require(token)
        except AuthError as exc:
            raise AuthenticationFailed(exc.message, code=exc.code) from exc
        return SessionUser(claims), token

    def authenticate_header(self, request) -> str:
        return self.keyword


class HasSession(BasePermission):
    def has_permission(self, request, view) -> bool:
        return isinstance(request.user, SessionUser)
