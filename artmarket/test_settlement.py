from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase

from artmarket.errors import (
    ConfirmationTimeout,
    ConflictError,
    InsufficientBalance,
    NotFoundError,
    PersistenceError,
    TransactionFailed,
    ValidationError,
)
from artmarket.ledger import AssetRef, ConsensusWatcher, LedgerGateway, MirrorResult, MirrorStatus
from artmarket.models import Account, Asset, Sale, SettlementAttempt
from artmarket.settlement import (
    CacheAssetLock,
    DjangoPersistenceGateway,
    FailureReason,
    PurchaseConfig,
    PurchaseIntent,
    PurchaseOrchestrator,
    PurchaseState,
    RejectReason,
    SettlementPlan,
    SettlementReconciler,
)
from artmarket.settlement.fees import to_hbar


TX_ID = '0.0.1001@1700000000.000000123'


def _mirror_success(token_id='0.0.5000', serial=1, receiver='0.0.3001'):
    return MirrorResult(MirrorStatus.SUCCESS, {
        'result': 'SUCCESS',
        'nft_transfers': [
            {'token_id': token_id, 'serial_number': serial, 'receiver_account_id': receiver},
        ],
    })


class SettlementPlanTests(SimpleTestCase):
    def test_two_percent_fee(self):
        plan = SettlementPlan.compute('100')

        self.assertEqual(plan.fee_amount, Decimal('2.00000000'))
        self.assertEqual(plan.seller_amount, Decimal('98.00000000'))
        self.assertEqual(plan.gross_tinybars, 10_000_000_000)
        self.assertEqual(plan.fee_tinybars, 200_000_000)
        self.assertEqual(plan.seller_tinybars, 9_800_000_000)

    def test_parts_always_sum_to_gross(self):
        for price in ('0.00000001', '0.00000049', '1.23456789', '33.33333333', '1000000', '0.5'):
            with self.subTest(price=price):
                plan = SettlementPlan.compute(price)
                self.assertEqual(plan.fee_amount + plan.seller_amount, plan.gross_price)
                self.assertEqual(plan.fee_tinybars + plan.seller_tinybars, plan.gross_tinybars)
                self.assertGreaterEqual(plan.fee_amount, 0)
                self.assertGreater(plan.seller_amount, 0)

    def test_rounds_to_tinybars(self):
        plan = SettlementPlan.compute('1.23456789')

        # 2% of 1.23456789 is 0.0246913578, half-even to 8 places
        self.assertEqual(plan.fee_amount, Decimal('0.02469136'))
        self.assertEqual(plan.seller_amount, Decimal('1.20987653'))

    def test_rejects_bad_inputs(self):
        for price in ('0', '-1', 'abc', 'NaN'):
            with self.subTest(price=price), self.assertRaises(ValidationError):
                SettlementPlan.compute(price)
        with self.assertRaises(ValidationError):
            SettlementPlan.compute('10', fee_percent='101')

    def test_to_hbar_quantizes(self):
        self.assertEqual(to_hbar(Decimal('1.000000005')), Decimal('1.00000000'))
        self.assertEqual(to_hbar(3), Decimal('3.00000000'))


class OrchestratorTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.seller = Account.objects.create(wallet_address='0.0.2001', role=Account.Role.ARTIST)
        self.buyer = Account.objects.create(wallet_address='0.0.3001')
        self.other_buyer = Account.objects.create(wallet_address='0.0.3002')
        self.asset = Asset.objects.create(
            token_id='0.0.5000',
            serial_number=1,
            creator=self.seller,
            owner=self.seller,
            title='Sunset over Lagos',
            price_hbar=Decimal('100'),
            is_listed=True,
        )

        self.ledger = MagicMock(spec=LedgerGateway)
        self.ledger.submit.return_value = TX_ID
        self.ledger.get_explorer_url.return_value = f'https://hashscan.io/testnet/transaction/{TX_ID}'
        self.watcher = MagicMock(spec=ConsensusWatcher)
        self.watcher.poll_status.return_value = _mirror_success()
        self.persistence = DjangoPersistenceGateway()
        self.orchestrator = PurchaseOrchestrator(
            persistence=self.persistence,
            ledger=self.ledger,
            watcher=self.watcher,
            config=PurchaseConfig(treasury_account_id='0.0.1001', baseline_seconds=4, retry_delay_ms=0),
            lock=CacheAssetLock(timeout=60),
        )

    def _intent(self, buyer=None, price='100', asset_id=None) -> PurchaseIntent:
        buyer = buyer or self.buyer
        return PurchaseIntent(
            asset_id=asset_id or self.asset.id,
            buyer_id=buyer.id,
            buyer_wallet_address=buyer.wallet_address,
            expected_price=Decimal(price),
        )


class PurchaseOrchestratorTests(OrchestratorTestCase):
    def test_successful_purchase(self):
        result = self.orchestrator.purchase(self._intent())

        self.assertTrue(result.succeeded)
        self.assertEqual(result.states, [
            PurchaseState.VALIDATING,
            PurchaseState.PLAN_COMPUTED,
            PurchaseState.SUBMITTED,
            PurchaseState.AWAITING_CONFIRMATION,
            PurchaseState.CONFIRMED,
            PurchaseState.PERSISTED,
        ])
        self.assertEqual(result.transaction_id, TX_ID)
        self.assertEqual(result.explorer_url, f'https://hashscan.io/testnet/transaction/{TX_ID}')

        plan, buyer_address, seller_address, treasury, asset_ref = self.ledger.submit.call_args.args
        self.assertEqual(plan.fee_amount, Decimal('2'))
        self.assertEqual(plan.seller_amount, Decimal('98'))
        self.assertEqual((buyer_address, seller_address, treasury), ('0.0.3001', '0.0.2001', '0.0.1001'))
        self.assertEqual(asset_ref, AssetRef('0.0.5000', 1))
        self.watcher.wait_for_baseline.assert_called_once_with(4)
        self.watcher.poll_status.assert_called_once_with(TX_ID, 10, 0)

        self.asset.refresh_from_db()
        self.assertEqual(self.asset.owner_id, self.buyer.id)
        self.assertFalse(self.asset.is_listed)
        self.assertIsNone(self.asset.price_hbar)

        sale = Sale.objects.get()
        self.assertEqual(sale.transaction_id, TX_ID)
        self.assertEqual(sale.status, Sale.Status.COMPLETED)
        self.assertEqual(sale.seller_id, self.seller.id)
        self.assertEqual(sale.platform_fee_hbar, Decimal('2'))
        self.assertEqual(result.sale.id, sale.id)

        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.PERSISTED)
        self.assertIsNotNone(attempt.confirmed_at)

    def test_price_tolerance(self):
        for price in ('100.005', '99.99'):
            with self.subTest(price=price):
                Sale.objects.all().delete()
                SettlementAttempt.objects.all().delete()
                Asset.objects.filter(pk=self.asset.pk).update(
                    owner=self.seller, is_listed=True, price_hbar=Decimal('100'))

                result = self.orchestrator.purchase(self._intent(price=price))

                self.assertTrue(result.succeeded)
                self.assertEqual(result.plan.gross_price, Decimal('100'))

    def test_price_changed_is_rejected_before_ledger(self):
        for price in ('99.98', '98.5', '101'):
            with self.subTest(price=price):
                result = self.orchestrator.purchase(self._intent(price=price))

                self.assertEqual(result.state, PurchaseState.REJECTED)
                self.assertEqual(result.reason, RejectReason.PRICE_CHANGED)
                self.assertEqual(result.error.context['current_price'], '100.00000000')
        self.ledger.submit.assert_not_called()
        self.assertFalse(SettlementAttempt.objects.exists())

    def test_self_purchase_is_rejected(self):
        result = self.orchestrator.purchase(self._intent(buyer=self.seller))

        self.assertEqual(result.reason, RejectReason.SELF_PURCHASE)
        self.assertIsInstance(result.error, ConflictError)
        self.ledger.submit.assert_not_called()

    def test_unlisted_unpriced_and_missing_assets(self):
        result = self.orchestrator.purchase(self._intent(asset_id=999999))
        self.assertEqual(result.reason, RejectReason.NOT_FOUND)
        self.assertIsInstance(result.error, NotFoundError)

        self.asset.price_hbar = None
        self.asset.save()
        self.assertEqual(self.orchestrator.purchase(self._intent()).reason, RejectReason.NO_PRICE)

        self.asset.is_listed = False
        self.asset.save()
        self.assertEqual(self.orchestrator.purchase(self._intent()).reason, RejectReason.NOT_LISTED)
        self.ledger.submit.assert_not_called()

    def test_duplicate_after_failed_attempt(self):
        self.ledger.submit.side_effect = InsufficientBalance('Insufficient HBAR balance')

        first = self.orchestrator.purchase(self._intent())
        self.assertEqual(first.state, PurchaseState.SETTLEMENT_FAILED)
        self.assertEqual(first.reason, FailureReason.INSUFFICIENT_BALANCE)
        self.assertEqual(first.states[-1], PurchaseState.SETTLEMENT_FAILED)
        self.assertEqual(SettlementAttempt.objects.get().status, SettlementAttempt.Status.FAILED)

        self.ledger.submit.side_effect = None
        second = self.orchestrator.purchase(self._intent())

        self.assertEqual(second.reason, RejectReason.DUPLICATE_IN_FLIGHT)
        self.assertEqual(self.ledger.submit.call_count, 1)

    def test_duplicate_window_is_per_buyer(self):
        self.ledger.submit.side_effect = InsufficientBalance('Insufficient HBAR balance')
        self.orchestrator.purchase(self._intent())
        self.ledger.submit.side_effect = None

        result = self.orchestrator.purchase(self._intent(buyer=self.other_buyer))

        self.assertTrue(result.succeeded)

    def test_confirmation_timeout(self):
        self.watcher.poll_status.side_effect = ConfirmationTimeout(
            'Transaction verification timeout', transaction_id=TX_ID)

        result = self.orchestrator.purchase(self._intent())

        self.assertEqual(result.state, PurchaseState.SETTLEMENT_FAILED)
        self.assertEqual(result.reason, FailureReason.CONFIRMATION_TIMEOUT)
        self.assertEqual(result.transaction_id, TX_ID)
        self.asset.refresh_from_db()
        self.assertEqual(self.asset.owner_id, self.seller.id)
        self.assertFalse(Sale.objects.exists())
        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.TIMED_OUT)
        self.assertEqual(attempt.transaction_id, TX_ID)

        # The outcome is unknown, so nobody else can buy until it is reconciled
        other = self.orchestrator.purchase(self._intent(buyer=self.other_buyer))
        self.assertEqual(other.reason, RejectReason.SETTLEMENT_UNRESOLVED)

    def test_failed_on_ledger(self):
        self.watcher.poll_status.return_value = MirrorResult(
            MirrorStatus.FAILED, {'result': 'INSUFFICIENT_PAYER_BALANCE'})

        result = self.orchestrator.purchase(self._intent())

        self.assertEqual(result.reason, FailureReason.TRANSACTION_FAILED)
        self.assertIsInstance(result.error, TransactionFailed)
        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.FAILED)
        self.assertEqual(attempt.failure_reason, 'INSUFFICIENT_PAYER_BALANCE')
        self.asset.refresh_from_db()
        self.assertTrue(self.asset.is_listed)

    def test_persistence_failure_after_confirmation(self):
        with patch.object(DjangoPersistenceGateway, 'commit_purchase', side_effect=RuntimeError('db down')):
            result = self.orchestrator.purchase(self._intent())

        self.assertEqual(result.state, PurchaseState.SETTLEMENT_FAILED)
        self.assertEqual(result.reason, FailureReason.RECONCILIATION_REQUIRED)
        self.assertIn(PurchaseState.CONFIRMED, result.states)
        self.assertIsInstance(result.error, PersistenceError)
        self.assertEqual(result.error.http_status, 202)
        self.assertEqual(result.error.to_response()['transactionId'], TX_ID)
        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.RECONCILIATION_REQUIRED)

    def test_owner_changed_before_commit(self):
        self.ledger.submit.side_effect = lambda *args: (
            Asset.objects.filter(pk=self.asset.pk).update(owner=self.other_buyer) and TX_ID)

        result = self.orchestrator.purchase(self._intent())

        self.assertEqual(result.reason, FailureReason.RECONCILIATION_REQUIRED)
        self.assertFalse(Sale.objects.exists())

    def test_locked_asset_is_rejected(self):
        lock = CacheAssetLock(timeout=60)
        token = lock.acquire(self.asset.id)

        result = self.orchestrator.purchase(self._intent())

        self.assertEqual(result.reason, RejectReason.ASSET_LOCKED)
        self.ledger.submit.assert_not_called()

        lock.release(self.asset.id, token)
        self.assertTrue(self.orchestrator.purchase(self._intent()).succeeded)

    def test_lock_released_after_each_purchase(self):
        self.orchestrator.purchase(self._intent(price='1'))

        self.assertIsNotNone(CacheAssetLock().acquire(self.asset.id))

    def _purchase_losing_journal_write(self, lost_status):
        advance = DjangoPersistenceGateway.advance_attempt
        lost = []

        def flaky_advance(gateway, attempt_id, status, **kwargs):
            if status == lost_status and not lost:
                lost.append(status)
                raise RuntimeError('journal write lost')
            return advance(gateway, attempt_id, status, **kwargs)

        with patch.object(DjangoPersistenceGateway, 'advance_attempt', autospec=True, side_effect=flaky_advance):
            result = self.orchestrator.purchase(self._intent())
        self.assertEqual(lost, [lost_status])
        return result

    def test_lost_confirmed_write_still_records_sale(self):
        result = self._purchase_losing_journal_write(SettlementAttempt.Status.CONFIRMED)

        self.assertTrue(result.succeeded)
        self.assertEqual(Sale.objects.get().transaction_id, TX_ID)
        self.asset.refresh_from_db()
        self.assertEqual(self.asset.owner_id, self.buyer.id)
        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.PERSISTED)
        self.assertEqual(attempt.transaction_id, TX_ID)

    def test_lost_submitted_write_keeps_transaction_id(self):
        result = self._purchase_losing_journal_write(SettlementAttempt.Status.SUBMITTED)

        self.assertTrue(result.succeeded)
        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.PERSISTED)
        self.assertEqual(attempt.transaction_id, TX_ID)

    def test_lost_submitted_write_before_timeout_is_reconcilable(self):
        self.watcher.poll_status.side_effect = ConfirmationTimeout('timeout', transaction_id=TX_ID)

        self._purchase_losing_journal_write(SettlementAttempt.Status.SUBMITTED)

        attempt = SettlementAttempt.objects.get()
        self.assertEqual(attempt.status, SettlementAttempt.Status.TIMED_OUT)
        self.assertEqual(attempt.transaction_id, TX_ID)
        self.assertTrue(self.persistence.has_unresolved_settlement(self.asset.id))


class SettlementReconcilerTests(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.reconciler_watcher = ConsensusWatcher('https://mirror.test', client=MagicMock())
        self.reconciler = SettlementReconciler(self.persistence, self.reconciler_watcher)

    def _unrecorded_purchase(self):
        with patch.object(DjangoPersistenceGateway, 'commit_purchase', side_effect=RuntimeError('db down')):
            self.orchestrator.purchase(self._intent())
        return SettlementAttempt.objects.get()

    def test_completes_confirmed_purchase(self):
        attempt = self._unrecorded_purchase()

        with patch.object(self.reconciler_watcher, 'poll_status', return_value=_mirror_success()):
            report = self.reconciler.run()

        self.assertEqual(report.persisted, [attempt.id])
        attempt.refresh_from_db()
        self.assertEqual(attempt.status, SettlementAttempt.Status.PERSISTED)
        sale = Sale.objects.get()
        self.assertEqual(sale.transaction_id, TX_ID)
        self.assertEqual(sale.seller_id, self.seller.id)
        self.assertEqual(sale.seller_receives_hbar, Decimal('98'))
        self.asset.refresh_from_db()
        self.assertEqual(self.asset.owner_id, self.buyer.id)

        with patch.object(self.reconciler_watcher, 'poll_status', return_value=_mirror_success()):
            self.assertEqual(self.reconciler.run().total, 0)
        self.assertEqual(Sale.objects.count(), 1)

    def test_completes_timed_out_purchase_once_visible(self):
        self.watcher.poll_status.side_effect = ConfirmationTimeout('timeout', transaction_id=TX_ID)
        self.orchestrator.purchase(self._intent())

        with patch.object(self.reconciler_watcher, 'poll_status',
                          side_effect=ConfirmationTimeout('timeout', transaction_id=TX_ID)):
            report = self.reconciler.run()
        self.assertEqual(len(report.pending), 1)

        with patch.object(self.reconciler_watcher, 'poll_status', return_value=_mirror_success()):
            report = self.reconciler.run()
        self.assertEqual(len(report.persisted), 1)
        self.assertEqual(SettlementAttempt.objects.get().status, SettlementAttempt.Status.PERSISTED)

    def test_closes_failed_transaction(self):
        self.watcher.poll_status.side_effect = ConfirmationTimeout('timeout', transaction_id=TX_ID)
        self.orchestrator.purchase(self._intent())

        failed = MirrorResult(MirrorStatus.FAILED, {'result': 'INVALID_SIGNATURE'})
        with patch.object(self.reconciler_watcher, 'poll_status', return_value=failed):
            report = self.reconciler.run()

        self.assertEqual(len(report.failed), 1)
        self.assertEqual(SettlementAttempt.objects.get().status, SettlementAttempt.Status.FAILED)
        self.asset.refresh_from_db()
        self.assertEqual(self.asset.owner_id, self.seller.id)

    def test_leaves_attempt_without_nft_leg(self):
        self._unrecorded_purchase()

        with patch.object(self.reconciler_watcher, 'poll_status',
                          return_value=_mirror_success(receiver='0.0.9999')):
            report = self.reconciler.run()

        self.assertEqual(len(report.pending), 1)
        self.assertFalse(Sale.objects.exists())

    def test_management_command(self):
        reconciler = MagicMock()
        reconciler.run.return_value.persisted = [1]
        reconciler.run.return_value.failed = []
        reconciler.run.return_value.pending = [2]
        out = StringIO()

        with patch('artmarket.management.commands.reconcile_settlements.build_reconciler',
                   return_value=reconciler):
            call_command('reconcile_settlements', '--stale-after', '60', stdout=out)

        self.assertEqual(reconciler.stale_after_seconds, 60)
        self.assertIn('persisted=1 failed=0 pending=1', out.getvalue())
