"""
Consensus confirmation through the Hedera mirror node REST API.

Submission only tells us the network accepted the transaction. Whether its
legs took effect is read back from ``/api/v1/transactions/{id}``, which lags
consensus by a few seconds: a 404 or an empty ``transactions`` list means
"not yet", not "failed".
"""
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx
from loguru import logger

from artmarket.errors import ConfirmationTimeout


MAINNET_MIRROR_URL = 'https://mainnet-public.mirrornode.hedera.com'
TESTNET_MIRROR_URL = 'https://testnet.mirrornode.hedera.com'


def mirror_base_url(network: str) -> str:
    return MAINNET_MIRROR_URL if network == 'mainnet' else TESTNET_MIRROR_URL


def to_mirror_transaction_id(transaction_id: str) -> str:
    """
    Convert an SDK transaction id (``0.0.123@1700000000.000000001``) to the
    form the mirror expects (``0.0.123-1700000000-000000001``).
    """
    if '@' not in transaction_id:
        return transaction_id
    account, _, valid_start = transaction_id.partition('@')
    seconds, _, nanos = valid_start.partition('.')
    # Scheduled/nonce suffixes (``?scheduled``) are not part of the path
    nanos = nanos.split('?')[0].split('/')[0]
    return f'{account}-{seconds}-{nanos}'


class MirrorStatus(str, enum.Enum):
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


@dataclass(frozen=True)
class MirrorResult:
    status: MirrorStatus
    transaction: Dict[str, Any] = field(default_factory=dict)

    @property
    def result_code(self) -> str:
        return self.transaction.get('result', '')


class ConsensusWatcher:
    def __init__(
        self,
        base_url: str,
        request_timeout: float = 10,
        sleep: Callable[[float], None] = time.sleep,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._client = client or httpx.Client(
            timeout=request_timeout,
            headers={'Accept': 'application/json'},
        )

    def wait_for_baseline(self, seconds: float = 4) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def _fetch(self, mirror_id: str) -> Optional[Dict[str, Any]]:
        """Return the first mirror transaction, or None when not indexed yet."""
        response = self._client.get(
            f'{self.base_url}/api/v1/transactions/{mirror_id}',
            timeout=self.request_timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        transactions = response.json().get('transactions') or []
        return transactions[0] if transactions else None

    def poll_status(self, transaction_id: str, max_retries: int = 10, delay_ms: int = 2000) -> MirrorResult:
        """
        Poll the mirror until the transaction shows up with a result.

        Raises:
            ConfirmationTimeout: The transaction was not visible after ``max_retries`` attempts
        """
        mirror_id = to_mirror_transaction_id(transaction_id)
        logger.info('Checking transaction status on mirror node: {}', mirror_id)

        for attempt in range(1, max_retries + 1):
            if attempt > 1 and delay_ms > 0:
                self._sleep(delay_ms / 1000)

            try:
                transaction = self._fetch(mirror_id)
            except (httpx.HTTPError, ValueError) as e:
                logger.error('Error checking mirror node for {} (attempt {}): {}', mirror_id, attempt, e)
                continue

            if transaction is None:
                logger.debug('Transaction {} not yet on mirror node (attempt {})', mirror_id, attempt)
                continue

            if transaction.get('result') == 'SUCCESS':
                logger.info('Transaction confirmed on mirror node: {}', mirror_id)
                return MirrorResult(MirrorStatus.SUCCESS, transaction)

            logger.error('Transaction {} failed on Hedera: {}', mirror_id, transaction.get('result'))
            return MirrorResult(MirrorStatus.FAILED, transaction)

        logger.error('Transaction {} not confirmed after {} attempts', mirror_id, max_retries)
        raise ConfirmationTimeout(
            'Transaction verification timeout',
            transaction_id=transaction_id,
        )

    @staticmethod
    def has_nft_transfer(transaction: Dict[str, Any], token_id: str, serial_number: int, receiver: str) -> bool:
        return any(
            t.get('token_id') == token_id
            and t.get('serial_number') == serial_number
            and t.get('receiver_account_id') == receiver
            for t in transaction.get('nft_transfers') or []
        )

    @staticmethod
    def has_hbar_transfer(transaction: Dict[str, Any], receiver: str, amount_tinybars: int) -> bool:
        return any(
            t.get('account') == receiver and t.get('amount') == amount_tinybars
            for t in transaction.get('transfers') or []
        )

    def verify_nft_transfer(self, transaction_id: str, token_id: str, serial_number: int, receiver: str,
                            max_retries: int = 10, delay_ms: int = 2000) -> bool:
        try:
            result = self.poll_status(transaction_id, max_retries, delay_ms)
        except ConfirmationTimeout:
            logger.error('Failed to verify NFT transfer for {}', transaction_id)
            return False
        if result.status is not MirrorStatus.SUCCESS:
            return False
        return self.has_nft_transfer(result.transaction, token_id, serial_number, receiver)

    def verify_hbar_transfer(self, transaction_id: str, receiver: str, amount_tinybars: int,
                             max_retries: int = 10, delay_ms: int = 2000) -> bool:
        try:
            result = self.poll_status(transaction_id, max_retries, delay_ms)
        except ConfirmationTimeout:
            logger.error('Failed to verify HBAR transfer for {}', transaction_id)
            return False
        if result.status is not MirrorStatus.SUCCESS:
            return False
        return self.has_hbar_transfer(result.transaction, receiver, amount_tinybars)
