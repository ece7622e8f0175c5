"""
Challenge-response sign-in flow.

challenge -> freshness check -> wallet cross-check -> signature -> identity
lookup -> session token (or a registration-needed answer).
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

from artmarket.errors import ChallengeRejected, SignatureRejected, ValidationError, WalletMismatch

from .challenge import Challenge, ChallengeIssuer, is_wallet_address
from .factory import SignatureVerifier
from .signatures import ClaimedIdentity
from .tokens import SessionTokenCodec


@dataclass(frozen=True)
class Identity:
    user_id: str
    wallet_address: str
    role: str
    profile: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignInResult:
    needs_registration: bool
    wallet_address: str
    token: Optional[str] = None
    identity: Optional[Identity] = None
    verified_identity: Optional[ClaimedIdentity] = None


class WalletAuthService:
    def __init__(
        self,
        issuer: ChallengeIssuer,
        verifier: SignatureVerifier,
        codec: SessionTokenCodec,
        identity_lookup: Callable[[str], Optional[Identity]],
    ):
        self.issuer = issuer
        self.verifier = verifier
        self.codec = codec
        self.identity_lookup = identity_lookup

    def request_challenge(self, wallet_address: str) -> Challenge:
        return self.issuer.create_challenge(wallet_address)

    def sign_in(self, message: str, signature: str, identity: ClaimedIdentity) -> SignInResult:
        if not is_wallet_address(identity.wallet_address):
            raise ValidationError('Invalid Hedera wallet address format', code='INVALID_WALLET_ADDRESS')

        freshness = self.issuer.validate(message)
        if not freshness.is_valid:
            raise ChallengeRejected(
                'Authentication message expired or invalid. Please request a new message.',
                reason=freshness.reason,
            )

        # The signed message must name the wallet the caller claims.
        if self.issuer.extract_wallet(message) != identity.wallet_address:
            logger.warning('Wallet mismatch between request {} and signed message', identity.wallet_address)
            raise WalletMismatch('Wallet address mismatch')

        result = self.verifier.check(message, signature, identity)
        if not result.is_valid:
            raise SignatureRejected(
                'Invalid signature. Please try signing again.',
                reason=result.invalid_reason,
            )

        existing = self.identity_lookup(identity.wallet_address)
        if existing is None:
            logger.info('Verified wallet {} has no account; registration needed', identity.wallet_address)
            return SignInResult(
                needs_registration=True,
                wallet_address=identity.wallet_address,
                verified_identity=identity,
            )

        token = self.codec.issue(existing.user_id, existing.wallet_address, existing.role)
        return SignInResult(
            needs_registration=False,
            wallet_address=existing.wallet_address,
            token=token,
            identity=existing,
        )
