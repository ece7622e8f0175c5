"""
Ledger gateway interface.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from artmarket.errors import (
    InsufficientBalance,
    InvalidAssetReference,
    InvalidLedgerSignature,
    LedgerError,
    UnknownLedgerFailure,
)

if TYPE_CHECKING:
    from artmarket.settlement.fees import SettlementPlan


ACCOUNT_ID_PATTERN = re.compile(r'^0\.0\.\d+$')

# Ledger status names, matched against SDK error text or receipt status.
_FAILURE_CODES = (
    (('INSUFFICIENT_ACCOUNT_BALANCE', 'INSUFFICIENT_PAYER_BALANCE'),
     InsufficientBalance, 'Insufficient HBAR balance'),
    (('INVALID_SIGNATURE',),
     InvalidLedgerSignature, 'Invalid transaction signature'),
    (('INVALID_TOKEN_ID', 'INVALID_NFT_ID', 'SENDER_DOES_NOT_OWN_NFT_SERIAL_NO',
      'TOKEN_NOT_ASSOCIATED_TO_ACCOUNT', 'INVALID_ACCOUNT_ID'),
     InvalidAssetReference, 'Invalid asset or account reference'),
)


@dataclass(frozen=True)
class AssetRef:
    """Ledger reference to one NFT: collection token id plus serial."""
    token_id: str
    serial_number: int

    @classmethod
    def from_stored(cls, token_id: str, serial_number: Optional[int]) -> 'AssetRef':
        """
        Stored token ids may carry the serial as a fourth segment
        (``0.0.N.S``); the collection id is always the first three.
        """
        parts = (token_id or '').split('.')
        if len(parts) < 3:
            raise InvalidAssetReference(f'Invalid token id: {token_id}')
        if serial_number is None:
            if len(parts) < 4 or not parts[3].isdigit():
                raise InvalidAssetReference(f'Missing serial number for token {token_id}')
            serial_number = int(parts[3])
        return cls(token_id='.'.join(parts[:3]), serial_number=int(serial_number))


def map_ledger_failure(message: str, transaction_id: Optional[str] = None) -> LedgerError:
    """Map a ledger failure message to a typed error."""
    upper = (message or '').upper()
    for codes, error_class, text in _FAILURE_CODES:
        for code in codes:
            if code in upper:
                return error_class(text, transaction_id=transaction_id, ledger_status=code)
    return UnknownLedgerFailure(
        'Purchase failed on the ledger.',
        transaction_id=transaction_id,
        ledger_message=message,
    )


class LedgerGateway(ABC):
    """
    Abstract base class for ledgers that settle purchases.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the gateway.

        Args:
            config: Ledger configuration (network, operator credentials, treasury)
        """
        self.config = config

    @property
    @abstractmethod
    def network_name(self) -> str:
        """Return the network name (e.g., 'testnet', 'mainnet')."""
        pass

    @abstractmethod
    def submit(
        self,
        plan: 'SettlementPlan',
        buyer_address: str,
        seller_address: str,
        treasury_address: str,
        asset_ref: AssetRef,
    ) -> str:
        """
        Submit one atomic transfer: buyer pays the gross price, the seller and
        the treasury are credited, and the NFT moves from seller to buyer.

        Returns:
            The ledger transaction id. Submission does not imply the legs
            have taken effect; confirmation comes from the mirror.

        Raises:
            LedgerError: A typed subclass for known ledger failure codes
        """
        pass

    def validate_address(self, address: str) -> bool:
        return bool(address) and ACCOUNT_ID_PATTERN.match(address) is not None

    @abstractmethod
    def get_explorer_url(self, transaction_id: str) -> str:
        """Return a public explorer link for the transaction."""
        pass
