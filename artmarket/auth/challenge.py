"""
Time-stamped, wallet-bound sign-in challenges.

The rendered message is what the wallet signs. It embeds the wallet address
and the issue time on their own ``Wallet:`` and ``Timestamp:`` lines so both
can be pattern-matched back out of a signed message.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from django.utils import timezone
from loguru import logger

from artmarket.errors import ValidationError


WALLET_ADDRESS_PATTERN = re.compile(r'^0\.0\.\d+$')
_TIMESTAMP_LINE = re.compile(r'Timestamp: (\d+)')
_WALLET_LINE = re.compile(r'Wallet: (0\.0\.\d+)')

MESSAGE_TEMPLATE = (
    '{app_name} Authentication\n'
    '\n'
    'Wallet: {wallet_address}\n'
    'Timestamp: {issued_at_millis}\n'
    '\n'
    'Sign this message to prove you own this wallet.\n'
    'This signature will not trigger any blockchain transaction or cost any fees.'
)


def now_millis() -> int:
    return int(timezone.now().timestamp() * 1000)


@dataclass(frozen=True)
class Challenge:
    wallet_address: str
    issued_at_millis: int
    rendered_message: str


class ChallengeFailure(str, Enum):
    EXPIRED = 'expired'
    FUTURE_TIMESTAMP = 'future_timestamp'
    MALFORMED = 'malformed'


@dataclass(frozen=True)
class ChallengeCheck:
    """Result of validating a challenge message."""
    is_valid: bool
    issued_at_millis: Optional[int] = None
    failure: Optional[ChallengeFailure] = None

    @property
    def reason(self) -> Optional[str]:
        return self.failure.value if self.failure else None


def is_wallet_address(value: str) -> bool:
    return bool(value) and WALLET_ADDRESS_PATTERN.match(value) is not None


class ChallengeIssuer:
    """Builds challenges and validates their freshness."""

    def __init__(
        self,
        app_name: str = 'AfriArt',
        ttl_millis: int = 5 * 60 * 1000,
        clock: Callable[[], int] = now_millis,
    ):
        self.app_name = app_name
        self.ttl_millis = ttl_millis
        self.clock = clock

    @property
    def ttl_minutes(self) -> int:
        return self.ttl_millis // 60000

    def create_challenge(self, wallet_address: str) -> Challenge:
        if not is_wallet_address(wallet_address or ''):
            raise ValidationError(
                'Invalid Hedera wallet address format. Expected: 0.0.xxxxx',
                code='INVALID_WALLET_ADDRESS',
            )
        issued_at = self.clock()
        message = MESSAGE_TEMPLATE.format(
            app_name=self.app_name,
            wallet_address=wallet_address,
            issued_at_millis=issued_at,
        )
        logger.info('Created auth challenge for {} at {}', wallet_address, issued_at)
        return Challenge(
            wallet_address=wallet_address,
            issued_at_millis=issued_at,
            rendered_message=message,
        )

    def validate(self, message: str) -> ChallengeCheck:
        match = _TIMESTAMP_LINE.search(message or '')
        if not match:
            logger.warning('No timestamp found in auth message')
            return ChallengeCheck(is_valid=False, failure=ChallengeFailure.MALFORMED)

        issued_at = int(match.group(1))
        age = self.clock() - issued_at

        if age < 0:
            logger.warning('Auth message timestamp is {}ms in the future', -age)
            return ChallengeCheck(
                is_valid=False,
                issued_at_millis=issued_at,
                failure=ChallengeFailure.FUTURE_TIMESTAMP,
            )
        if age > self.ttl_millis:
            logger.warning('Auth message expired: age {}ms > {}ms', age, self.ttl_millis)
            return ChallengeCheck(
                is_valid=False,
                issued_at_millis=issued_at,
                failure=ChallengeFailure.EXPIRED,
            )

        return ChallengeCheck(is_valid=True, issued_at_millis=issued_at)

    def extract_wallet(self, message: str) -> Optional[str]:
        match = _WALLET_LINE.search(message or '')
        if not match:
            logger.warning('No wallet address found in auth message')
            return None
        return match.group(1)
