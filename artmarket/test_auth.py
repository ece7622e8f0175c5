import base64
import unittest

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from django.test import SimpleTestCase
from eth_account import Account
from eth_account.messages import encode_defunct

from artmarket.auth import (
    ChallengeIssuer,
    ClaimedIdentity,
    Identity,
    NativeKeyScheme,
    RecoverableAddressScheme,
    SessionTokenCodec,
    SignatureVerifier,
    TokenStatus,
    WalletAuthService,
)
from artmarket.auth.challenge import ChallengeFailure
from artmarket.auth.signatures import SIGNATURE_MAP_AVAILABLE
from artmarket.errors import (
    ChallengeRejected,
    SignatureRejected,
    TokenExpired,
    TokenInvalid,
    ValidationError,
    WalletMismatch,
)

if SIGNATURE_MAP_AVAILABLE:
    from hiero_sdk_python.hapi.services.basic_types_pb2 import SignatureMap, SignaturePair


WALLET = '0.0.12345'
ISSUED_AT = 1_700_000_000_000


class Clock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _ed25519_identity(wallet: str = WALLET, der: bool = True):
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()
    if der:
        encoded = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    else:
        encoded = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
    return private_key, ClaimedIdentity(wallet_address=wallet, public_key=encoded.hex())


def _flip_byte(data: bytes, index: int = 10) -> bytes:
    flipped = bytearray(data)
    flipped[index] ^= 0x01
    return bytes(flipped)


class ChallengeIssuerTests(SimpleTestCase):
    def setUp(self) -> None:
        self.clock = Clock(ISSUED_AT)
        self.issuer = ChallengeIssuer(app_name='AfriArt', clock=self.clock)

    def test_message_embeds_wallet_and_timestamp(self):
        challenge = self.issuer.create_challenge(WALLET)

        self.assertEqual(challenge.issued_at_millis, ISSUED_AT)
        self.assertTrue(challenge.rendered_message.startswith('AfriArt Authentication\n\n'))
        self.assertIn(f'Wallet: {WALLET}\n', challenge.rendered_message)
        self.assertIn(f'Timestamp: {ISSUED_AT}\n', challenge.rendered_message)
        self.assertEqual(self.issuer.extract_wallet(challenge.rendered_message), WALLET)
        self.assertEqual(self.issuer.ttl_minutes, 5)

    def test_rejects_invalid_wallet_format(self):
        for wallet in ('', '0.0', '0x1234', '1.0.5', '0.0.12a'):
            with self.assertRaises(ValidationError) as ctx:
                self.issuer.create_challenge(wallet)
            self.assertEqual(ctx.exception.code, 'INVALID_WALLET_ADDRESS')

    def test_freshness_boundary(self):
        message = self.issuer.create_challenge(WALLET).rendered_message

        self.clock.now = ISSUED_AT + 299_999
        self.assertTrue(self.issuer.validate(message).is_valid)

        self.clock.now = ISSUED_AT + 300_000
        self.assertTrue(self.issuer.validate(message).is_valid)

        self.clock.now = ISSUED_AT + 300_001
        result = self.issuer.validate(message)
        self.assertFalse(result.is_valid)
        self.assertEqual(result.failure, ChallengeFailure.EXPIRED)

    def test_future_timestamp_is_rejected(self):
        message = self.issuer.create_challenge(WALLET).rendered_message
        self.clock.now = ISSUED_AT - 1

        result = self.issuer.validate(message)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.reason, 'future_timestamp')

    def test_message_without_timestamp_is_malformed(self):
        result = self.issuer.validate(f'AfriArt Authentication\n\nWallet: {WALLET}\n')

        self.assertFalse(result.is_valid)
        self.assertEqual(result.failure, ChallengeFailure.MALFORMED)
        self.assertIsNone(self.issuer.extract_wallet('no wallet here'))


class NativeKeySchemeTests(SimpleTestCase):
    message = f'AfriArt Authentication\n\nWallet: {WALLET}\nTimestamp: {ISSUED_AT}\n'

    def setUp(self) -> None:
        self.scheme = NativeKeyScheme()

    def test_accepts_base64_signature_with_der_key(self):
        private_key, identity = _ed25519_identity()
        signature = private_key.sign(self.message.encode('utf-8'))

        result = self.scheme.check(self.message, base64.b64encode(signature).decode(), identity)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.scheme, 'hedera-ed25519')

    def test_accepts_hex_signature_with_raw_key(self):
        private_key, identity = _ed25519_identity(der=False)
        signature = private_key.sign(self.message.encode('utf-8'))

        self.assertTrue(self.scheme.verify(self.message, signature.hex(), identity))
        self.assertTrue(self.scheme.verify(self.message, '0x' + signature.hex(), identity))

    def test_rejects_flipped_signature_byte(self):
        private_key, identity = _ed25519_identity()
        signature = _flip_byte(private_key.sign(self.message.encode('utf-8')))

        result = self.scheme.check(self.message, base64.b64encode(signature).decode(), identity)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.invalid_reason, 'Signature does not match public key')

    def test_rejects_modified_message(self):
        private_key, identity = _ed25519_identity()
        signature = base64.b64encode(private_key.sign(self.message.encode('utf-8'))).decode()

        self.assertFalse(self.scheme.verify(self.message + ' ', signature, identity))

    def test_rejects_other_key(self):
        private_key, _ = _ed25519_identity()
        _, other_identity = _ed25519_identity()
        signature = base64.b64encode(private_key.sign(self.message.encode('utf-8'))).decode()

        self.assertFalse(self.scheme.verify(self.message, signature, other_identity))

    def test_garbage_input_does_not_raise(self):
        _, identity = _ed25519_identity()

        self.assertFalse(self.scheme.verify(self.message, 'not a signature', identity))
        self.assertFalse(self.scheme.verify(self.message, '', identity))
        bad_key = ClaimedIdentity(wallet_address=WALLET, public_key='zz-not-hex')
        self.assertFalse(self.scheme.verify(self.message, 'AAAA', bad_key))

    def test_trailing_signature_in_oversized_payload(self):
        private_key, identity = _ed25519_identity()
        signature = private_key.sign(self.message.encode('utf-8'))
        # Field number zero is not valid protobuf, so the container parse fails
        payload = b'\x00' * 12 + signature

        self.assertTrue(self.scheme.verify(self.message, base64.b64encode(payload).decode(), identity))

    @unittest.skipUnless(SIGNATURE_MAP_AVAILABLE, 'hiero-sdk-python is not installed')
    def test_signature_map_container(self):
        private_key, identity = _ed25519_identity(der=False)
        raw_public_key = bytes.fromhex(identity.public_key)
        signature = private_key.sign(self.message.encode('utf-8'))
        sig_map = SignatureMap(sigPair=[
            SignaturePair(pubKeyPrefix=raw_public_key, ed25519=signature),
        ])
        payload = base64.b64encode(sig_map.SerializeToString()).decode()

        self.assertTrue(self.scheme.verify(self.message, payload, identity))

        tampered = SignatureMap(sigPair=[
            SignaturePair(pubKeyPrefix=raw_public_key, ed25519=_flip_byte(signature)),
        ])
        self.assertFalse(self.scheme.verify(
            self.message, base64.b64encode(tampered.SerializeToString()).decode(), identity))


class RecoverableAddressSchemeTests(SimpleTestCase):
    message = f'AfriArt Authentication\n\nWallet: {WALLET}\nTimestamp: {ISSUED_AT}\n'

    def setUp(self) -> None:
        self.scheme = RecoverableAddressScheme()
        self.account = Account.create('artmarket-evm-signer')
        self.identity = ClaimedIdentity(wallet_address=WALLET, evm_address=self.account.address)

    def _sign(self, message: str) -> str:
        signed = self.account.sign_message(encode_defunct(text=message))
        return '0x' + bytes(signed.signature).hex()

    def test_recovers_signer(self):
        result = self.scheme.check(self.message, self._sign(self.message), self.identity)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.signer.lower(), self.account.address.lower())

    def test_address_match_is_case_insensitive(self):
        identity = ClaimedIdentity(wallet_address=WALLET, evm_address=self.account.address.lower())

        self.assertTrue(self.scheme.verify(self.message, self._sign(self.message), identity))

    def test_rejects_signature_for_other_message(self):
        self.assertFalse(self.scheme.verify(self.message, self._sign('something else'), self.identity))

    def test_rejects_malformed_signature(self):
        result = self.scheme.check(self.message, '0x1234', self.identity)

        self.assertFalse(result.is_valid)
        self.assertIn('130 hex', result.invalid_reason)

    def test_rejects_flipped_byte(self):
        signature = self._sign(self.message)
        raw = _flip_byte(bytes.fromhex(signature[2:]), index=5)

        self.assertFalse(self.scheme.verify(self.message, '0x' + raw.hex(), self.identity))


class SignatureVerifierTests(SimpleTestCase):
    def test_selects_scheme_from_identity(self):
        native = ClaimedIdentity(wallet_address=WALLET, public_key='00' * 32)
        evm = ClaimedIdentity(wallet_address=WALLET, evm_address='0x' + '11' * 20)

        self.assertIsInstance(SignatureVerifier.scheme_for(native), NativeKeyScheme)
        self.assertIsInstance(SignatureVerifier.scheme_for(evm), RecoverableAddressScheme)

    def test_missing_identity_is_rejected(self):
        result = SignatureVerifier().check('msg', 'sig', ClaimedIdentity(wallet_address=WALLET))

        self.assertFalse(result.is_valid)
        self.assertFalse(SignatureVerifier().verify('msg', 'sig', ClaimedIdentity(wallet_address=WALLET)))


class SessionTokenCodecTests(SimpleTestCase):
    def setUp(self) -> None:
        self.clock = Clock(1_700_000_000)
        self.codec = SessionTokenCodec('secret', ttl_seconds=3600, clock=self.clock)

    def test_round_trip_claims(self):
        token = self.codec.issue(7, WALLET, 'buyer')

        result = self.codec.verify(token)

        self.assertEqual(result.status, TokenStatus.VALID)
        self.assertEqual(result.claims.user_id, '7')
        self.assertEqual(result.claims.wallet_address, WALLET)
        self.assertEqual(result.claims.role, 'buyer')
        self.assertEqual(result.claims.expires_at - result.claims.issued_at, 3600)

    def test_issue_is_deterministic_for_fixed_clock(self):
        self.assertEqual(self.codec.issue(7, WALLET, 'buyer'), self.codec.issue(7, WALLET, 'buyer'))

    def test_expiry_uses_injected_clock(self):
        token = self.codec.issue(7, WALLET, 'buyer')

        self.clock.now += 3600
        self.assertTrue(self.codec.verify(token).is_valid)

        self.clock.now += 1
        result = self.codec.verify(token)
        self.assertEqual(result.status, TokenStatus.EXPIRED)
        with self.assertRaises(TokenExpired):
            self.codec.require(token)

    def test_tampered_or_foreign_tokens_are_invalid(self):
        token = self.codec.issue(7, WALLET, 'buyer')
        header, payload, signature = token.split('.')
        tampered = '.'.join([header, payload, signature[:-2] + ('AA' if signature[-2:] != 'AA' else 'BB')])
        foreign = SessionTokenCodec('other-secret', clock=self.clock).issue(7, WALLET, 'admin')

        self.assertEqual(self.codec.verify(tampered).status, TokenStatus.INVALID)
        self.assertEqual(self.codec.verify(foreign).status, TokenStatus.INVALID)
        self.assertEqual(self.codec.verify('').status, TokenStatus.INVALID)
        with self.assertRaises(TokenInvalid):
            self.codec.require('not.a.token')

    def test_secret_is_required(self):
        with self.assertRaises(ValueError):
            SessionTokenCodec('')


class WalletAuthServiceTests(SimpleTestCase):
    def setUp(self) -> None:
        self.clock = Clock(ISSUED_AT)
        self.accounts = {}
        self.service = WalletAuthService(
            issuer=ChallengeIssuer(clock=self.clock),
            verifier=SignatureVerifier(),
            codec=SessionTokenCodec('secret', clock=lambda: ISSUED_AT // 1000),
            identity_lookup=self.accounts.get,
        )
        self.private_key, self.identity = _ed25519_identity()

    def _signed_challenge(self, wallet: str = WALLET):
        message = self.service.request_challenge(wallet).rendered_message
        signature = base64.b64encode(self.private_key.sign(message.encode('utf-8'))).decode()
        return message, signature

    def test_unknown_wallet_needs_registration(self):
        message, signature = self._signed_challenge()

        result = self.service.sign_in(message, signature, self.identity)

        self.assertTrue(result.needs_registration)
        self.assertIsNone(result.token)
        self.assertEqual(result.verified_identity, self.identity)

    def test_known_wallet_receives_token(self):
        self.accounts[WALLET] = Identity(user_id='3', wallet_address=WALLET, role='artist')
        message, signature = self._signed_challenge()

        result = self.service.sign_in(message, signature, self.identity)

        self.assertFalse(result.needs_registration)
        claims = self.service.codec.require(result.token)
        self.assertEqual(claims.user_id, '3')
        self.assertEqual(claims.role, 'artist')

    def test_expired_challenge_is_rejected(self):
        message, signature = self._signed_challenge()
        self.clock.now += 300_001

        with self.assertRaises(ChallengeRejected) as ctx:
            self.service.sign_in(message, signature, self.identity)
        self.assertEqual(ctx.exception.context['reason'], 'expired')

    def test_wallet_mismatch_is_rejected(self):
        message, signature = self._signed_challenge(wallet='0.0.999')

        with self.assertRaises(WalletMismatch):
            self.service.sign_in(message, signature, self.identity)

    def test_bad_signature_is_rejected(self):
        message, _ = self._signed_challenge()
        other_key, _ = _ed25519_identity()
        signature = base64.b64encode(other_key.sign(message.encode('utf-8'))).decode()

        with self.assertRaises(SignatureRejected):
            self.service.sign_in(message, signature, self.identity)

    def test_invalid_wallet_format(self):
        identity = ClaimedIdentity(wallet_address='0xabc', public_key=self.identity.public_key)

        with self.assertRaises(ValidationError):
            self.service.sign_in('message', 'signature', identity)
