"""
Signed, time-bounded session tokens (HS256 JWT).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from django.utils import timezone
from jose import JWTError, jwt
from loguru import logger

from artmarket.errors import TokenExpired, TokenInvalid


DEFAULT_TTL_SECONDS = 7 * 24 * 3600
REQUIRED_CLAIMS = ('userId', 'walletAddress', 'role', 'iat', 'exp')


def now_seconds() -> int:
    return int(timezone.now().timestamp())


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    wallet_address: str
    role: str
    issued_at: int
    expires_at: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'SessionClaims':
        return cls(
            user_id=str(payload['userId']),
            wallet_address=str(payload['walletAddress']),
            role=str(payload['role']),
            issued_at=int(payload['iat']),
            expires_at=int(payload['exp']),
        )


class TokenStatus(str, Enum):
    VALID = 'valid'
    EXPIRED = 'expired'
    INVALID = 'invalid'


@dataclass(frozen=True)
class TokenCheck:
    status: TokenStatus
    claims: Optional[SessionClaims] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status is TokenStatus.VALID


class SessionTokenCodec:
    """Issues and verifies session tokens against an injected clock."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        algorithm: str = 'HS256',
        clock: Callable[[], int] = now_seconds,
    ):
        if not secret:
            raise ValueError('Session token secret is required')
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self.clock = clock

    def issue(self, user_id: Any, wallet_address: str, role: str) -> str:
        issued_at = self.clock()
        payload = {
            'userId': str(user_id),
            'walletAddress': wallet_address,
            'role': role,
            'iat': issued_at,
            'exp': issued_at + self.ttl_seconds,
        }
        token = jwt.encode(payload, self._secret, algorithm=self.algorithm)
        logger.info(
            'Issued session token for user {} ({}, {}) valid {}s',
            user_id, wallet_address, role, self.ttl_seconds,
        )
        return token

    def verify(self, token: str) -> TokenCheck:
        if not token:
            return TokenCheck(status=TokenStatus.INVALID, reason='Missing token')
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={'verify_exp': False, 'verify_iat': False},
            )
        except JWTError as exc:
            logger.warning('Invalid session token: {}', exc)
            return TokenCheck(status=TokenStatus.INVALID, reason='Invalid token')

        missing = [name for name in REQUIRED_CLAIMS if name not in payload]
        if missing:
            logger.warning('Session token missing claims: {}', missing)
            return TokenCheck(status=TokenStatus.INVALID, reason='Invalid token')

        try:
            claims = SessionClaims.from_payload(payload)
        except (TypeError, ValueError) as exc:
            logger.warning('Malformed session token claims: {}', exc)
            return TokenCheck(status=TokenStatus.INVALID, reason='Invalid token')

        if self.clock() > claims.expires_at:
            logger.warning('Session token expired for user {}', claims.user_id)
            return TokenCheck(status=TokenStatus.EXPIRED, claims=claims, reason='Token expired')

        return TokenCheck(status=TokenStatus.VALID, claims=claims)

    def require(self, token: str) -> SessionClaims:
        """Like ``verify`` but raises ``TokenExpired`` / ``TokenInvalid``."""
        result = self.verify(token)
        if result.status is TokenStatus.EXPIRED:
            raise TokenExpired('Token expired')
        if result.status is TokenStatus.INVALID:
            raise TokenInvalid(result.reason or 'Invalid token')
        return result.claims
