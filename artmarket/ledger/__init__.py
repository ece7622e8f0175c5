from .base import AssetRef, LedgerGateway, map_ledger_failure
from .hedera import HEDERA_AVAILABLE, HederaLedgerGateway
from .mirror import ConsensusWatcher, MirrorResult, MirrorStatus, mirror_base_url, to_mirror_transaction_id

__all__ = [
    'AssetRef',
    'ConsensusWatcher',
    'HEDERA_AVAILABLE',
    'HederaLedgerGateway',
    'LedgerGateway',
    'MirrorResult',
    'MirrorStatus',
    'map_ledger_failure',
    'mirror_base_url',
    'to_mirror_transaction_id',
]
