"""
Wallet challenge-response authentication.
"""
from .challenge import Challenge, ChallengeCheck, ChallengeIssuer
from .factory import SignatureVerifier
from .service import Identity, SignInResult, WalletAuthService
from .signatures import ClaimedIdentity, NativeKeyScheme, RecoverableAddressScheme
from .tokens import SessionClaims, SessionTokenCodec, TokenCheck, TokenStatus

__all__ = [
    'Challenge',
    'ChallengeCheck',
    'ChallengeIssuer',
    'ClaimedIdentity',
    'Identity',
    'NativeKeyScheme',
    'RecoverableAddressScheme',
    'SessionClaims',
    'SessionTokenCodec',
    'SignInResult',
    'SignatureVerifier',
    'TokenCheck',
    'TokenStatus',
    'WalletAuthService',
]
