"""
Hedera ledger gateway.

Purchases settle as a single ``TransferTransaction`` carrying three HBAR
legs and one NFT leg, so either all of them apply or none do.

The transaction is signed with the platform operator key only. That assumes
the operator is authorized to move funds and NFTs for both buyer and seller
(true for custodial/testnet accounts). Without an allowance or a buyer
pre-signature the ledger will reject the transfer with INVALID_SIGNATURE.
"""
from typing import TYPE_CHECKING, Any, Dict, Optional

from loguru import logger

try:
    from hiero_sdk_python import (
        AccountId,
        Client,
        Network,
        NftId,
        PrivateKey,
        ResponseCode,
        TokenId,
        TransferTransaction,
    )
    HEDERA_AVAILABLE = True
except ImportError:
    HEDERA_AVAILABLE = False
    logger.warning('hiero-sdk-python not installed. Hedera ledger gateway will not work.')

from artmarket.errors import LedgerError, UnknownLedgerFailure

from .base import AssetRef, LedgerGateway, map_ledger_failure

if TYPE_CHECKING:
    from artmarket.settlement.fees import SettlementPlan


class HederaLedgerGateway(LedgerGateway):
    """Submits purchase transfers to Hedera with the platform operator key."""

    EXPLORER_URL = 'https://hashscan.io'

    def __init__(self, config: Dict[str, Any], client: Any = None, operator_key: Any = None):
        super().__init__(config)
        self.network = config.get('network', 'testnet')
        self.operator_id = config.get('operator_id', '')
        self._client = client
        self._operator_key = operator_key

        if self._client is None and HEDERA_AVAILABLE:
            self._client, self._operator_key = self._build_client(config)

    @property
    def network_name(self) -> str:
        return self.network

    def _build_client(self, config: Dict[str, Any]):
        operator_id = config.get('operator_id', '')
        operator_key = config.get('operator_key', '')
        if not operator_id or not operator_key:
            logger.warning('Hedera operator credentials not configured; submissions will fail')
            return None, None

        key = PrivateKey.from_string(operator_key)
        client = Client(Network(network=self.network))
        client.set_operator(AccountId.from_string(operator_id), key)
        logger.info('Hedera client initialized for {}', self.network)
        return client, key

    def build_transfer(
        self,
        plan: 'SettlementPlan',
        buyer_address: str,
        seller_address: str,
        treasury_address: str,
        asset_ref: AssetRef,
    ):
        buyer = AccountId.from_string(buyer_address)
        seller = AccountId.from_string(seller_address)
        treasury = AccountId.from_string(treasury_address)
        nft_id = NftId(TokenId.from_string(asset_ref.token_id), asset_ref.serial_number)

        return (
            TransferTransaction()
            .add_hbar_transfer(buyer, -plan.gross_tinybars)
            .add_hbar_transfer(seller, plan.seller_tinybars)
            .add_hbar_transfer(treasury, plan.fee_tinybars)
            .add_nft_transfer(nft_id, seller, buyer)
        )

    @staticmethod
    def _status_name(status: Any) -> str:
        try:
            return ResponseCode(status).name
        except Exception:
            return str(status)

    def submit(
        self,
        plan: 'SettlementPlan',
        buyer_address: str,
        seller_address: str,
        treasury_address: str,
        asset_ref: AssetRef,
    ) -> str:
        if not HEDERA_AVAILABLE:
            raise UnknownLedgerFailure('Hedera SDK not installed')
        if self._client is None or self._operator_key is None:
            raise UnknownLedgerFailure('Hedera credentials not configured')

        for address in (buyer_address, seller_address, treasury_address):
            if not self.validate_address(address):
                raise map_ledger_failure(f'INVALID_ACCOUNT_ID: {address}')

        transaction_id: Optional[str] = None
        try:
            transaction = self.build_transfer(
                plan, buyer_address, seller_address, treasury_address, asset_ref,
            ).freeze_with(self._client)
            transaction.sign(self._operator_key)
            transaction_id = str(transaction.transaction_id)

            receipt = transaction.execute(self._client)
        except LedgerError:
            raise
        except Exception as e:
            logger.error(
                'Failed to execute atomic purchase for {} serial {}: {}',
                asset_ref.token_id, asset_ref.serial_number, e,
            )
            raise map_ledger_failure(str(e), transaction_id=transaction_id) from e

        status = getattr(receipt, 'status', None)
        if status is not None and status != ResponseCode.SUCCESS:
            status_name = self._status_name(status)
            logger.error('Purchase transaction {} rejected: {}', transaction_id, status_name)
            raise map_ledger_failure(status_name, transaction_id=transaction_id)

        logger.info(
            'Purchase transaction submitted: {} (gross {} tinybars, fee {} tinybars)',
            transaction_id, plan.gross_tinybars, plan.fee_tinybars,
        )
        return transaction_id

    def get_explorer_url(self, transaction_id: str) -> str:
        return f'{self.EXPLORER_URL}/{self.network}/transaction/{transaction_id}'
