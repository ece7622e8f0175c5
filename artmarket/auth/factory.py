"""
Selects a signature scheme from the identity fields present in a request.
"""
from typing import Dict, Type

from loguru import logger

from .signatures import (
    ClaimedIdentity,
    NativeKeyScheme,
    RecoverableAddressScheme,
    SignatureCheck,
    SignatureScheme,
)


class SignatureVerifier:
    """Polymorphic verifier: delegates to the scheme the identity selects."""

    # Checked in order; the first identity field that is set wins.
    _schemes: Dict[str, Type[SignatureScheme]] = {
        'public_key': NativeKeyScheme,
        'evm_address': RecoverableAddressScheme,
    }

    @classmethod
    def scheme_for(cls, identity: ClaimedIdentity) -> SignatureScheme:
        """
        Create the scheme for the given identity.

        Raises:
            ValueError: If no supported identity field is present
        """
        for field_name, scheme_class in cls._schemes.items():
            if getattr(identity, field_name, None):
                return scheme_class()
        supported = ', '.join(cls._schemes.keys())
        raise ValueError(
            f'No verifying identity supplied. Expected one of: {supported}'
        )

    def check(self, message: str, signature: str, identity: ClaimedIdentity) -> SignatureCheck:
        try:
            scheme = self.scheme_for(identity)
        except ValueError as exc:
            logger.info('Signature check without verifying identity: {}', exc)
            return SignatureCheck(is_valid=False, scheme='none', invalid_reason=str(exc))
        return scheme.check(message, signature, identity)

    def verify(self, message: str, signature: str, identity: ClaimedIdentity) -> bool:
        return self.check(message, signature, identity).is_valid
