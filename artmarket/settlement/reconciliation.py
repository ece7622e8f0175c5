"""
Completes settlements whose ledger outcome is known but not recorded.

Attempts left in ``timed_out``, ``confirmed`` or ``reconciliation_required``
(and ``submitted`` ones older than a cutoff) are re-read from the mirror.
A successful transaction whose NFT leg reached the buyer is persisted; a
failed one closes the attempt. Writes are idempotent: the sale insert is keyed
by the unique transaction id and the ownership update is a compare-and-set.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, List

from django.utils import timezone
from loguru import logger

from artmarket.errors import ConfirmationTimeout
from artmarket.ledger.base import AssetRef
from artmarket.ledger.mirror import ConsensusWatcher, MirrorStatus
from artmarket.models import SettlementAttempt

from .persistence import AttemptRecord, PersistenceGateway


@dataclass
class ReconciliationReport:
    persisted: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    pending: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.persisted) + len(self.failed) + len(self.pending)


class SettlementReconciler:
    def __init__(
        self,
        persistence: PersistenceGateway,
        watcher: ConsensusWatcher,
        max_retries: int = 1,
        retry_delay_ms: int = 0,
        stale_after_seconds: int = 300,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.persistence = persistence
        self.watcher = watcher
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock

    def run(self) -> ReconciliationReport:
        report = ReconciliationReport()
        cutoff = self.clock() - timedelta(seconds=self.stale_after_seconds)
        for attempt in self.persistence.attempts_needing_reconciliation(submitted_before=cutoff):
            try:
                outcome = self.reconcile(attempt)
            except Exception as e:
                logger.exception('Failed to reconcile settlement attempt {}: {}', attempt.id, e)
                outcome = 'pending'
            getattr(report, outcome).append(attempt.id)
        logger.info(
            'Reconciliation finished: {} persisted, {} failed, {} pending',
            len(report.persisted), len(report.failed), len(report.pending),
        )
        return report

    def reconcile(self, attempt: AttemptRecord) -> str:
        """Return ``persisted``, ``failed`` or ``pending`` for one attempt."""
        if not attempt.transaction_id:
            logger.warning('Settlement attempt {} has no transaction id; leaving it pending', attempt.id)
            return 'pending'

        try:
            mirror = self.watcher.poll_status(attempt.transaction_id, self.max_retries, self.retry_delay_ms)
        except ConfirmationTimeout:
            logger.info('Transaction {} still not visible on mirror node', attempt.transaction_id)
            return 'pending'

        if mirror.status is not MirrorStatus.SUCCESS:
            if attempt.status in (SettlementAttempt.Status.SUBMITTED, SettlementAttempt.Status.TIMED_OUT):
                self.persistence.advance_attempt(attempt.id, SettlementAttempt.Status.FAILED, reason=mirror.result_code)
                return 'failed'
            logger.error('Attempt {} marked {} but mirror reports {}', attempt.id, attempt.status, mirror.result_code)
            return 'pending'

        asset = self.persistence.get_asset_for_purchase(attempt.asset_id)
        buyer = self.persistence.get_identity(str(attempt.buyer_id))
        if asset is None or buyer is None:
            logger.error('Attempt {} references a missing asset or buyer', attempt.id)
            return 'pending'

        asset_ref = AssetRef.from_stored(asset.token_id, asset.serial_number)
        if not self.watcher.has_nft_transfer(
                mirror.transaction, asset_ref.token_id, asset_ref.serial_number, buyer.wallet_address):
            logger.error('Transaction {} has no NFT transfer to buyer {}', attempt.transaction_id, buyer.wallet_address)
            return 'pending'

        if attempt.status in (SettlementAttempt.Status.SUBMITTED, SettlementAttempt.Status.TIMED_OUT):
            self.persistence.advance_attempt(attempt.id, SettlementAttempt.Status.CONFIRMED)

        if asset.owner_id not in (attempt.seller_id, attempt.buyer_id):
            logger.error('Asset {} owner changed since attempt {}; manual review needed', asset.id, attempt.id)
            return 'pending'
        # Ownership may already have moved; the sale is still recorded against the seller
        snapshot = replace(asset, owner_id=attempt.seller_id)

        sale = self.persistence.commit_purchase(
            attempt.id, snapshot, attempt.buyer_id, attempt.plan, attempt.transaction_id)
        logger.info('Reconciled attempt {}: sale {} for transaction {}', attempt.id, sale.id, attempt.transaction_id)
        return 'persisted'
