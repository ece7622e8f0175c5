"""
Wallet signature schemes.

Two schemes are supported, selected by which identity field the client sent:

* ``NativeKeyScheme`` - Hedera ED25519 keys (``publicKey``). The wallet signs
  the raw UTF-8 bytes of the challenge.
* ``RecoverableAddressScheme`` - EVM personal-sign / EIP-191 (``evmAddress``).
  The signer address is recovered from the signature and compared.
"""
import base64
import binascii
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import load_der_public_key
from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3

try:
    from hiero_sdk_python.hapi.services.basic_types_pb2 import SignatureMap
    SIGNATURE_MAP_AVAILABLE = True
except ImportError:
    SIGNATURE_MAP_AVAILABLE = False
    logger.warning('hiero-sdk-python not installed. SignatureMap containers will be sliced, not parsed.')


ED25519_SIGNATURE_LENGTH = 64
ED25519_PUBLIC_KEY_LENGTH = 32
EVM_SIGNATURE_PATTERN = re.compile(r'^0x[0-9a-fA-F]{130}$')


@dataclass(frozen=True)
class ClaimedIdentity:
    """Identity fields the caller claims to control."""
    wallet_address: str
    public_key: Optional[str] = None
    evm_address: Optional[str] = None


@dataclass(frozen=True)
class SignatureCheck:
    """Result of signature verification."""
    is_valid: bool
    scheme: str
    invalid_reason: Optional[str] = None
    signer: Optional[str] = None


class SignatureScheme(ABC):
    """
    Abstract base class for wallet signature schemes.
    """

    #: Identity field on ``ClaimedIdentity`` that selects this scheme.
    identity_field: str = ''

    @property
    @abstractmethod
    def scheme_name(self) -> str:
        """Return the scheme name (e.g., 'hedera-ed25519', 'evm-personal-sign')."""
        pass

    @abstractmethod
    def check(self, message: str, signature: str, identity: ClaimedIdentity) -> SignatureCheck:
        """
        Verify ``signature`` over ``message`` against the claimed identity.

        Implementations never raise; every failure becomes an invalid result.
        """
        pass

    def verify(self, message: str, signature: str, identity: ClaimedIdentity) -> bool:
        return self.check(message, signature, identity).is_valid

    def _reject(self, reason: str) -> SignatureCheck:
        logger.info('{} signature rejected: {}', self.scheme_name, reason)
        return SignatureCheck(is_valid=False, scheme=self.scheme_name, invalid_reason=reason)


class NativeKeyScheme(SignatureScheme):
    """Hedera ED25519 signatures over the raw challenge bytes."""

    identity_field = 'public_key'

    @property
    def scheme_name(self) -> str:
        return 'hedera-ed25519'

    @staticmethod
    def load_public_key(public_key: str) -> Ed25519PublicKey:
        """Accept a DER-encoded (hex) or raw 32-byte (hex) ED25519 public key."""
        key_bytes = bytes(HexBytes(public_key.strip()))
        if len(key_bytes) == ED25519_PUBLIC_KEY_LENGTH:
            return Ed25519PublicKey.from_public_bytes(key_bytes)
        key = load_der_public_key(key_bytes)
        if not isinstance(key, Ed25519PublicKey):
            raise ValueError('Public key is not an ED25519 key')
        return key

    @staticmethod
    def decode_signature(signature: str) -> Iterator[Tuple[str, bytes]]:
        """Yield (encoding, bytes) candidates in base64, hex, raw order."""
        try:
            decoded = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            decoded = None
        if decoded:
            yield 'base64', decoded

        try:
            decoded = bytes(HexBytes(signature))
        except (TypeError, ValueError):
            decoded = None
        if decoded:
            yield 'hex', decoded

        try:
            yield 'raw', signature.encode('latin-1')
        except UnicodeEncodeError:
            yield 'raw', signature.encode('utf-8')

    @staticmethod
    def _signatures_from_container(payload: bytes, public_key: bytes) -> List[bytes]:
        """Pull ED25519 signatures for ``public_key`` out of a SignatureMap."""
        if not SIGNATURE_MAP_AVAILABLE:
            return []
        try:
            sig_map = SignatureMap.FromString(payload)
        except Exception as exc:
            logger.debug('Signature payload is not a SignatureMap: {}', exc)
            return []

        found = []
        for pair in sig_map.sigPair:
            if pair.WhichOneof('signature') != 'ed25519':
                continue
            if pair.pubKeyPrefix and not public_key.startswith(pair.pubKeyPrefix):
                continue
            if len(pair.ed25519) == ED25519_SIGNATURE_LENGTH:
                found.append(pair.ed25519)
        return found

    def signature_candidates(self, payload: bytes, public_key: bytes) -> List[bytes]:
        if len(payload) == ED25519_SIGNATURE_LENGTH:
            return [payload]
        if len(payload) < ED25519_SIGNATURE_LENGTH:
            return []
        from_container = self._signatures_from_container(payload, public_key)
        if from_container:
            return from_container
        # Not a parseable container: assume the signature trails the payload.
        return [payload[-ED25519_SIGNATURE_LENGTH:]]

    def check(self, message: str, signature: str, identity: ClaimedIdentity) -> SignatureCheck:
        if not identity.public_key:
            return self._reject('Missing public key')
        if not signature:
            return self._reject('Missing signature')

        try:
            key = self.load_public_key(identity.public_key)
            raw_key = key.public_bytes_raw()
            message_bytes = message.encode('utf-8')

            for encoding, payload in self.decode_signature(signature):
                for candidate in self.signature_candidates(payload, raw_key):
                    try:
                        key.verify(candidate, message_bytes)
                    except InvalidSignature:
                        continue
                    logger.info(
                        'Wallet signature verified for {} ({} encoded)',
                        identity.wallet_address, encoding,
                    )
                    return SignatureCheck(
                        is_valid=True,
                        scheme=self.scheme_name,
                        signer=identity.public_key,
                    )
        except Exception as e:
            logger.error('Error verifying wallet signature for {}: {}', identity.public_key, e)
            return self._reject(f'Verification error: {e}')

        return self._reject('Signature does not match public key')


class RecoverableAddressScheme(SignatureScheme):
    """EIP-191 personal-sign signatures checked by address recovery."""

    identity_field = 'evm_address'

    @property
    def scheme_name(self) -> str:
        return 'evm-personal-sign'

    @staticmethod
    def recover_address(message: str, signature: str) -> str:
        signable = encode_defunct(text=message)
        return Account.recover_message(signable, signature=signature)

    def check(self, message: str, signature: str, identity: ClaimedIdentity) -> SignatureCheck:
        if not identity.evm_address:
            return self._reject('Missing EVM address')
        if not Web3.is_address(identity.evm_address):
            return self._reject(f'Malformed EVM address: {identity.evm_address}')
        if not EVM_SIGNATURE_PATTERN.match(signature or ''):
            return self._reject('Signature must be 0x followed by 130 hex characters')

        try:
            recovered = self.recover_address(message, signature)
        except Exception as e:
            logger.error('Unable to recover signer for {}: {}', identity.evm_address, e)
            return self._reject(f'Unable to recover signer: {e}')

        if recovered != Web3.to_checksum_address(identity.evm_address):
            return SignatureCheck(
                is_valid=False,
                scheme=self.scheme_name,
                invalid_reason=f'Signature mismatch: expected {identity.evm_address}, got {recovered}',
                signer=recovered,
            )

        logger.info('EVM signature verified for {} ({})', identity.wallet_address, recovered)
        return SignatureCheck(is_valid=True, scheme=self.scheme_name, signer=recovered)
