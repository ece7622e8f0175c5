import base64
import json
import os
import subprocess
import sys
from decimal import Decimal
from unittest.mock import MagicMock, patch

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from django.conf import settings
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.urls import reverse
from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct

from artmarket.errors import ConfirmationTimeout
from artmarket.ledger import ConsensusWatcher, LedgerGateway, MirrorResult, MirrorStatus
from artmarket.models import Account, Asset, Sale, SettlementAttempt
from artmarket.services import _get_purchase_config, build_token_codec


TX_ID = '0.0.1001@1700000000.000000123'


class AuthViewTests(TestCase):
    def setUp(self) -> None:
        self.wallet = '0.0.4242'
        self.private_key = Ed25519PrivateKey.generate()
        self.public_key = self.private_key.public_key().public_bytes(
            Encoding.DER, PublicFormat.SubjectPublicKeyInfo).hex()

    def _challenge(self) -> str:
        response = self.client.get(reverse('artmarket:auth-message'), {'walletAddress': self.wallet})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['data']['expiresInMinutes'], 5)
        return body['data']['message']

    def _verify(self, message: str, signature: str, **identity):
        payload = {'walletAddress': self.wallet, 'message': message, 'signature': signature}
        payload.update(identity or {'publicKey': self.public_key})
        return self.client.post(
            reverse('artmarket:auth-verify'),
            data=json.dumps(payload),
            content_type='application/json',
        )

    def _sign(self, message: str) -> str:
        return base64.b64encode(self.private_key.sign(message.encode('utf-8'))).decode()

    def test_message_requires_valid_wallet(self):
        response = self.client.get(reverse('artmarket:auth-message'), {'walletAddress': 'abc'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'INVALID_WALLET_ADDRESS')

        response = self.client.post(
            reverse('artmarket:auth-message'),
            data=json.dumps({'walletAddress': self.wallet}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn(f'Wallet: {self.wallet}', response.json()['data']['message'])

    @override_settings(CHALLENGE_TTL_SECONDS=600)
    def test_message_reports_configured_lifetime(self):
        response = self.client.get(reverse('artmarket:auth-message'), {'walletAddress': self.wallet})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['expiresInMinutes'], 10)

    def test_unregistered_wallet_needs_registration(self):
        message = self._challenge()

        response = self._verify(message, self._sign(message))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['needsRegistration'])
        self.assertEqual(body['data'], {'walletAddress': self.wallet, 'publicKey': self.public_key})

    def test_registered_wallet_signs_in(self):
        account = Account.objects.create(wallet_address=self.wallet, role=Account.Role.ARTIST, display_name='Ada')
        message = self._challenge()

        response = self._verify(message, self._sign(message))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body['needsRegistration'])
        self.assertEqual(body['data']['user']['id'], str(account.id))
        self.assertEqual(body['data']['user']['role'], 'artist')

        token = body['data']['token']
        me = self.client.get(reverse('artmarket:auth-me'), HTTP_AUTHORIZATION=f'Bearer {token}')
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()['data']['user']['displayName'], 'Ada')

        logout = self.client.post(reverse('artmarket:auth-logout'), HTTP_AUTHORIZATION=f'Bearer {token}')
        self.assertEqual(logout.status_code, 200)

    def test_evm_identity_signs_in(self):
        evm_account = EthAccount.create('artmarket-view-signer')
        Account.objects.create(wallet_address=self.wallet)
        message = self._challenge()
        signed = evm_account.sign_message(encode_defunct(text=message))

        response = self._verify(message, '0x' + bytes(signed.signature).hex(), evmAddress=evm_account.address)

        self.assertEqual(response.status_code, 200)
        self.assertIn('token', response.json()['data'])

    def test_bad_signature(self):
        message = self._challenge()
        other = Ed25519PrivateKey.generate()
        signature = base64.b64encode(other.sign(message.encode('utf-8'))).decode()

        response = self._verify(message, signature)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {
            'success': False,
            'error': 'Invalid signature. Please try signing again.',
            'code': 'INVALID_SIGNATURE',
        })

    def test_wallet_mismatch(self):
        message = self._challenge().replace(self.wallet, '0.0.1')

        response = self._verify(message, self._sign(message))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'WALLET_MISMATCH')

    def test_missing_fields(self):
        response = self._verify('message', '')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'VALIDATION_ERROR')

        response = self.client.post(
            reverse('artmarket:auth-verify'),
            data=json.dumps({'walletAddress': self.wallet, 'message': 'm', 'signature': 's'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)

    def test_me_requires_token(self):
        response = self.client.get(reverse('artmarket:auth-me'))
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()['success'])

        response = self.client.get(reverse('artmarket:auth-me'), HTTP_AUTHORIZATION='Bearer not-a-token')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'TOKEN_INVALID')

    @override_settings(SESSION_TOKEN_TTL_SECONDS=-1)
    def test_expired_token(self):
        account = Account.objects.create(wallet_address=self.wallet)
        token = build_token_codec().issue(account.id, account.wallet_address, account.role)

        response = self.client.get(reverse('artmarket:auth-me'), HTTP_AUTHORIZATION=f'Bearer {token}')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'TOKEN_EXPIRED')


class PurchaseViewTests(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.seller = Account.objects.create(wallet_address='0.0.2001', role=Account.Role.ARTIST)
        self.buyer = Account.objects.create(wallet_address='0.0.3001')
        self.asset = Asset.objects.create(
            token_id='0.0.5000.1',
            creator=self.seller,
            owner=self.seller,
            title='Harmattan',
            price_hbar=Decimal('100'),
        )
        self.token = build_token_codec().issue(self.buyer.id, self.buyer.wallet_address, self.buyer.role)

        self.ledger = MagicMock(spec=LedgerGateway)
        self.ledger.submit.return_value = TX_ID
        self.ledger.get_explorer_url.return_value = f'https://hashscan.io/testnet/transaction/{TX_ID}'
        self.watcher = MagicMock(spec=ConsensusWatcher)
        self.watcher.poll_status.return_value = MirrorResult(MirrorStatus.SUCCESS, {'result': 'SUCCESS'})

        ledger_patch = patch('artmarket.services.build_ledger', return_value=self.ledger)
        watcher_patch = patch('artmarket.services.build_watcher', return_value=self.watcher)
        ledger_patch.start()
        watcher_patch.start()
        self.addCleanup(ledger_patch.stop)
        self.addCleanup(watcher_patch.stop)

    def _purchase(self, body, token=None):
        return self.client.post(
            reverse('artmarket:purchase', kwargs={'asset_id': self.asset.id}),
            data=json.dumps(body),
            content_type='application/json',
            HTTP_AUTHORIZATION=f'Bearer {token or self.token}',
        )

    def test_purchase_and_history(self):
        response = self._purchase({'expectedPrice': 100})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['data']['transactionId'], TX_ID)
        self.assertEqual(body['data']['explorerUrl'], f'https://hashscan.io/testnet/transaction/{TX_ID}')
        sale = body['data']['sale']
        self.assertEqual(sale['salePriceHbar'], '100.00000000')
        self.assertEqual(sale['platformFeeHbar'], '2.00000000')
        self.assertEqual(sale['sellerReceivesHbar'], '98.00000000')
        self.assertEqual(sale['status'], 'completed')

        purchases = self.client.get(
            reverse('artmarket:my-purchases'), HTTP_AUTHORIZATION=f'Bearer {self.token}').json()
        self.assertEqual([p['transactionId'] for p in purchases['data']['purchases']], [TX_ID])

        seller_token = build_token_codec().issue(self.seller.id, self.seller.wallet_address, self.seller.role)
        sales = self.client.get(
            reverse('artmarket:my-sales'), HTTP_AUTHORIZATION=f'Bearer {seller_token}').json()
        self.assertEqual(sales['data']['sales'][0]['title'], 'Harmattan')

    def test_requires_authentication(self):
        response = self.client.post(
            reverse('artmarket:purchase', kwargs={'asset_id': self.asset.id}),
            data=json.dumps({'expectedPrice': 100}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 401)
        self.ledger.submit.assert_not_called()

    def test_invalid_expected_price(self):
        for body in ({}, {'expectedPrice': 0}, {'expectedPrice': 'abc'}):
            with self.subTest(body=body):
                response = self._purchase(body)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['code'], 'VALIDATION_ERROR')

    def test_price_changed(self):
        response = self._purchase({'expectedPrice': '95'})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['code'], 'PRICE_CHANGED')
        self.assertEqual(body['currentPrice'], '100.00000000')

    def test_self_purchase_conflict(self):
        seller_token = build_token_codec().issue(self.seller.id, self.seller.wallet_address, self.seller.role)

        response = self._purchase({'expectedPrice': 100}, token=seller_token)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['code'], 'SELF_PURCHASE')

    def test_unknown_asset(self):
        response = self.client.post(
            reverse('artmarket:purchase', kwargs={'asset_id': 999999}),
            data=json.dumps({'expectedPrice': 100}),
            content_type='application/json',
            HTTP_AUTHORIZATION=f'Bearer {self.token}',
        )

        self.assertEqual(response.status_code, 404)

    def test_confirmation_timeout(self):
        self.watcher.poll_status.side_effect = ConfirmationTimeout(
            'Transaction verification timeout', transaction_id=TX_ID)

        response = self._purchase({'expectedPrice': 100})

        self.assertEqual(response.status_code, 504)
        body = response.json()
        self.assertEqual(body['code'], 'CONFIRMATION_TIMEOUT')
        self.assertEqual(body['transactionId'], TX_ID)

    def test_recording_failure_is_not_retryable(self):
        with patch('artmarket.settlement.persistence.DjangoPersistenceGateway.commit_purchase',
                   side_effect=RuntimeError('db down')):
            response = self._purchase({'expectedPrice': 100})

        self.assertEqual(response.status_code, 202)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['code'], 'SETTLEMENT_RECORDING_PENDING')
        self.assertTrue(body['reconciliationPending'])
        self.assertEqual(body['transactionId'], TX_ID)
        self.assertFalse(Sale.objects.exists())
        self.assertEqual(
            SettlementAttempt.objects.get().status, SettlementAttempt.Status.RECONCILIATION_REQUIRED)


class HealthViewTests(TestCase):
    def test_health(self):
        response = self.client.get(reverse('health'))

        self.assertEqual(response.status_code, 200)


class SettingsTests(TestCase):
    def test_purchase_amounts_are_decimals(self):
        self.assertIsInstance(settings.PURCHASE_FEE_PERCENT, Decimal)
        self.assertIsInstance(settings.PURCHASE_PRICE_TOLERANCE, Decimal)

        config = _get_purchase_config()
        self.assertEqual(config.fee_percent, Decimal('2'))
        self.assertEqual(config.price_tolerance, Decimal('0.01'))

    @override_settings(PURCHASE_PRICE_TOLERANCE='0.5', PURCHASE_FEE_PERCENT=3)
    def test_purchase_config_coerces_overrides(self):
        config = _get_purchase_config()

        self.assertEqual(config.price_tolerance, Decimal('0.5'))
        self.assertEqual(config.fee_percent, Decimal('3'))

    def test_app_imports_in_fresh_interpreter(self):
        script = (
            'import django; django.setup(); '
            'import artmarket.ledger; import artmarket.services; import artmarket.views'
        )
        env = dict(os.environ, DJANGO_SETTINGS_MODULE='core.settings_test')
        completed = subprocess.run(
            [sys.executable, '-c', script],
            cwd=str(settings.BASE_DIR),
            env=env,
            capture_output=True,
            text=True,
        )

        self.assertEqual(completed.returncode, 0, completed.stderr)
