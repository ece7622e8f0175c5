"""
Purchase settlement pipeline.

    VALIDATING -> PLAN_COMPUTED -> SUBMITTED -> AWAITING_CONFIRMATION
               -> CONFIRMED -> PERSISTED

with REJECTED (nothing reached the ledger) and SETTLEMENT_FAILED (the ledger
was involved) as the failure exits. There is no retry and no compensation
after submission: the ledger is the source of truth, and a confirmed
transfer that could not be recorded is left for ``SettlementReconciler``.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from django.core.cache import cache as default_cache
from django.utils import timezone
from loguru import logger

from artmarket.errors import (
    ConfirmationTimeout,
    ConflictError,
    InsufficientBalance,
    InvalidAssetReference,
    InvalidLedgerSignature,
    LedgerError,
    MarketplaceError,
    NotFoundError,
    PersistenceError,
    TransactionFailed,
    ValidationError,
)
from artmarket.ledger.base import AssetRef, LedgerGateway
from artmarket.ledger.mirror import ConsensusWatcher, MirrorStatus
from artmarket.models import SettlementAttempt

from .fees import PLATFORM_FEE_PERCENT, SettlementPlan, to_hbar
from .persistence import PersistenceGateway, SaleRecord


class PurchaseState(str, enum.Enum):
    VALIDATING = 'VALIDATING'
    PLAN_COMPUTED = 'PLAN_COMPUTED'
    SUBMITTED = 'SUBMITTED'
    AWAITING_CONFIRMATION = 'AWAITING_CONFIRMATION'
    CONFIRMED = 'CONFIRMED'
    PERSISTED = 'PERSISTED'
    REJECTED = 'REJECTED'
    SETTLEMENT_FAILED = 'SETTLEMENT_FAILED'


class RejectReason(str, enum.Enum):
    NOT_FOUND = 'NOT_FOUND'
    NOT_LISTED = 'NOT_LISTED'
    NO_PRICE = 'NO_PRICE'
    PRICE_CHANGED = 'PRICE_CHANGED'
    SELF_PURCHASE = 'SELF_PURCHASE'
    DUPLICATE_IN_FLIGHT = 'DUPLICATE_IN_FLIGHT'
    ASSET_LOCKED = 'ASSET_LOCKED'
    SETTLEMENT_UNRESOLVED = 'SETTLEMENT_UNRESOLVED'


class FailureReason(str, enum.Enum):
    INSUFFICIENT_BALANCE = 'INSUFFICIENT_BALANCE'
    INVALID_SIGNATURE = 'INVALID_SIGNATURE'
    INVALID_ASSET_REFERENCE = 'INVALID_ASSET_REFERENCE'
    TRANSACTION_FAILED = 'TRANSACTION_FAILED'
    CONFIRMATION_TIMEOUT = 'CONFIRMATION_TIMEOUT'
    UNKNOWN = 'UNKNOWN'
    RECONCILIATION_REQUIRED = 'RECONCILIATION_REQUIRED'


def failure_reason_for(error: LedgerError) -> FailureReason:
    if isinstance(error, InsufficientBalance):
        return FailureReason.INSUFFICIENT_BALANCE
    if isinstance(error, InvalidLedgerSignature):
        return FailureReason.INVALID_SIGNATURE
    if isinstance(error, InvalidAssetReference):
        return FailureReason.INVALID_ASSET_REFERENCE
    if isinstance(error, ConfirmationTimeout):
        return FailureReason.CONFIRMATION_TIMEOUT
    if isinstance(error, TransactionFailed):
        return FailureReason.TRANSACTION_FAILED
    return FailureReason.UNKNOWN


@dataclass(frozen=True)
class PurchaseIntent:
    asset_id: int
    buyer_id: int
    buyer_wallet_address: str
    expected_price: Decimal


@dataclass(frozen=True)
class PurchaseConfig:
    treasury_account_id: str
    fee_percent: Decimal = PLATFORM_FEE_PERCENT
    price_tolerance: Decimal = Decimal('0.01')
    duplicate_window_minutes: int = 5
    baseline_seconds: float = 4
    max_retries: int = 10
    retry_delay_ms: int = 2000


@dataclass
class PurchaseResult:
    state: PurchaseState
    reason: Optional[enum.Enum] = None
    sale: Optional[SaleRecord] = None
    plan: Optional[SettlementPlan] = None
    transaction_id: Optional[str] = None
    explorer_url: Optional[str] = None
    error: Optional[MarketplaceError] = None
    states: List[PurchaseState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is PurchaseState.PERSISTED


class CacheAssetLock:
    """Short-lived per-asset lock on the Django cache (``add`` is atomic)."""

    KEY_PREFIX = 'artmarket:purchase-lock'

    def __init__(self, cache=None, timeout: int = 120):
        self.cache = cache or default_cache
        self.timeout = timeout

    def _key(self, asset_id: int) -> str:
        return f'{self.KEY_PREFIX}:{asset_id}'

    def acquire(self, asset_id: int) -> Optional[str]:
        token = uuid.uuid4().hex
        if self.cache.add(self._key(asset_id), token, self.timeout):
            return token
        return None

    def release(self, asset_id: int, token: str) -> None:
        key = self._key(asset_id)
        if self.cache.get(key) == token:
            self.cache.delete(key)


class PurchaseOrchestrator:
    def __init__(
        self,
        persistence: PersistenceGateway,
        ledger: LedgerGateway,
        watcher: ConsensusWatcher,
        config: PurchaseConfig,
        lock: Optional[CacheAssetLock] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.persistence = persistence
        self.ledger = ledger
        self.watcher = watcher
        self.config = config
        self.lock = lock or CacheAssetLock()
        self.clock = clock

    def purchase(self, intent: PurchaseIntent) -> PurchaseResult:
        states = [PurchaseState.VALIDATING]
        token = self.lock.acquire(intent.asset_id)
        if token is None:
            return self._reject(intent, states, RejectReason.ASSET_LOCKED, ConflictError(
                'Another purchase of this NFT is in progress', code='ASSET_LOCKED'))
        try:
            return self._run(intent, states)
        finally:
            self.lock.release(intent.asset_id, token)

    def _reject(self, intent: PurchaseIntent, states: List[PurchaseState],
                reason: RejectReason, error: MarketplaceError) -> PurchaseResult:
        logger.info('Purchase of asset {} by buyer {} rejected: {}', intent.asset_id, intent.buyer_id, reason.value)
        states.append(PurchaseState.REJECTED)
        return PurchaseResult(state=PurchaseState.REJECTED, reason=reason, error=error, states=states)

    def _fail(self, intent: PurchaseIntent, states: List[PurchaseState], reason: FailureReason,
              error: MarketplaceError, plan: Optional[SettlementPlan] = None,
              transaction_id: Optional[str] = None) -> PurchaseResult:
        logger.error(
            'Purchase of asset {} by buyer {} failed ({}), transaction {}: {}',
            intent.asset_id, intent.buyer_id, reason.value, transaction_id, error.message,
        )
        states.append(PurchaseState.SETTLEMENT_FAILED)
        return PurchaseResult(
            state=PurchaseState.SETTLEMENT_FAILED,
            reason=reason,
            plan=plan,
            transaction_id=transaction_id,
            error=error,
            states=states,
        )

    def _journal(self, attempt_id: int, status: str, transaction_id: Optional[str] = None, reason: str = '') -> None:
        # After submission the ledger outcome stands whether or not the journal write succeeds.
        try:
            self.persistence.advance_attempt(attempt_id, status, transaction_id=transaction_id, reason=reason)
        except Exception as e:
            logger.error('Failed to move settlement attempt {} to {} (transaction {}): {}',
                         attempt_id, status, transaction_id, e)

    def _run(self, intent: PurchaseIntent, states: List[PurchaseState]) -> PurchaseResult:
        asset = self.persistence.get_asset_for_purchase(intent.asset_id)
        if asset is None:
            return self._reject(intent, states, RejectReason.NOT_FOUND, NotFoundError('NFT not found'))

        if not asset.is_listed:
            return self._reject(intent, states, RejectReason.NOT_LISTED, ValidationError(
                'NFT is not listed for sale', code='NOT_LISTED'))

        if asset.price is None or asset.price <= 0:
            return self._reject(intent, states, RejectReason.NO_PRICE, ValidationError(
                'NFT has no price set', code='NO_PRICE'))

        listed_price = to_hbar(asset.price)
        expected_price = to_hbar(intent.expected_price)
        if abs(expected_price - listed_price) > self.config.price_tolerance:
            return self._reject(intent, states, RejectReason.PRICE_CHANGED, ValidationError(
                'Price has changed. Please refresh and try again.',
                code='PRICE_CHANGED',
                current_price=str(listed_price),
            ))

        if asset.owner_id == intent.buyer_id:
            return self._reject(intent, states, RejectReason.SELF_PURCHASE, ConflictError(
                'You cannot purchase your own NFT', code='SELF_PURCHASE'))

        since = self.clock() - timedelta(minutes=self.config.duplicate_window_minutes)
        if (self.persistence.find_recent_sale(asset.id, intent.buyer_id, since) is not None
                or self.persistence.has_recent_attempt(asset.id, intent.buyer_id, since)):
            return self._reject(intent, states, RejectReason.DUPLICATE_IN_FLIGHT, ConflictError(
                'Purchase already in progress or recently completed', code='DUPLICATE_PURCHASE'))

        if self.persistence.has_unresolved_settlement(asset.id):
            return self._reject(intent, states, RejectReason.SETTLEMENT_UNRESOLVED, ConflictError(
                'A previous purchase of this NFT is still being settled', code='SETTLEMENT_UNRESOLVED'))

        plan = SettlementPlan.compute(listed_price, self.config.fee_percent)
        states.append(PurchaseState.PLAN_COMPUTED)

        try:
            asset_ref = AssetRef.from_stored(asset.token_id, asset.serial_number)
        except LedgerError as e:
            return self._fail(intent, states, FailureReason.INVALID_ASSET_REFERENCE, e, plan=plan)

        attempt_id = self.persistence.record_attempt(asset.id, intent.buyer_id, asset.owner_id, plan)
        logger.info(
            'Executing purchase of asset {} for buyer {}: price {} HBAR, fee {} HBAR, seller {} HBAR',
            asset.id, intent.buyer_id, plan.gross_price, plan.fee_amount, plan.seller_amount,
        )

        try:
            transaction_id = self.ledger.submit(
                plan,
                intent.buyer_wallet_address,
                asset.owner_wallet,
                self.config.treasury_account_id,
                asset_ref,
            )
        except LedgerError as e:
            self._journal(attempt_id, SettlementAttempt.Status.FAILED,
                          transaction_id=e.transaction_id, reason=e.code)
            return self._fail(intent, states, failure_reason_for(e), e,
                              plan=plan, transaction_id=e.transaction_id)

        states.append(PurchaseState.SUBMITTED)
        self._journal(attempt_id, SettlementAttempt.Status.SUBMITTED, transaction_id=transaction_id)

        states.append(PurchaseState.AWAITING_CONFIRMATION)
        self.watcher.wait_for_baseline(self.config.baseline_seconds)
        try:
            mirror = self.watcher.poll_status(transaction_id, self.config.max_retries, self.config.retry_delay_ms)
        except ConfirmationTimeout as e:
            self._journal(attempt_id, SettlementAttempt.Status.TIMED_OUT, transaction_id=transaction_id, reason=e.code)
            return self._fail(intent, states, FailureReason.CONFIRMATION_TIMEOUT, e,
                              plan=plan, transaction_id=transaction_id)

        if mirror.status is not MirrorStatus.SUCCESS:
            error = TransactionFailed(
                f'Transaction failed on Hedera: {mirror.result_code}',
                transaction_id=transaction_id,
                ledger_status=mirror.result_code,
            )
            self._journal(attempt_id, SettlementAttempt.Status.FAILED,
                          transaction_id=transaction_id, reason=mirror.result_code)
            return self._fail(intent, states, FailureReason.TRANSACTION_FAILED, error,
                              plan=plan, transaction_id=transaction_id)

        states.append(PurchaseState.CONFIRMED)
        self._journal(attempt_id, SettlementAttempt.Status.CONFIRMED, transaction_id=transaction_id)
        logger.info('Purchase transaction {} confirmed for asset {}', transaction_id, asset.id)

        try:
            sale = self.persistence.commit_purchase(attempt_id, asset, intent.buyer_id, plan, transaction_id)
        except Exception as e:
            self._journal(attempt_id, SettlementAttempt.Status.RECONCILIATION_REQUIRED,
                          transaction_id=transaction_id, reason=str(e))
            error = PersistenceError(
                'Purchase confirmed on the ledger but not yet recorded. It will be reconciled.',
                transaction_id=transaction_id,
                asset_id=asset.id,
                buyer_id=intent.buyer_id,
            )
            return self._fail(intent, states, FailureReason.RECONCILIATION_REQUIRED, error,
                              plan=plan, transaction_id=transaction_id)

        states.append(PurchaseState.PERSISTED)
        logger.info('NFT purchase completed: asset {} buyer {} sale {} transaction {}',
                    asset.id, intent.buyer_id, sale.id, transaction_id)
        return PurchaseResult(
            state=PurchaseState.PERSISTED,
            sale=sale,
            plan=plan,
            transaction_id=transaction_id,
            explorer_url=self.ledger.get_explorer_url(transaction_id),
            states=states,
        )
