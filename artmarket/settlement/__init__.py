from .fees import PLATFORM_FEE_PERCENT, SettlementPlan
from .orchestrator import (
    CacheAssetLock,
    FailureReason,
    PurchaseConfig,
    PurchaseIntent,
    PurchaseOrchestrator,
    PurchaseResult,
    PurchaseState,
    RejectReason,
)
from .persistence import DjangoPersistenceGateway, PersistenceGateway, SaleRecord
from .reconciliation import SettlementReconciler

__all__ = [
    'CacheAssetLock',
    'DjangoPersistenceGateway',
    'FailureReason',
    'PLATFORM_FEE_PERCENT',
    'PersistenceGateway',
    'PurchaseConfig',
    'PurchaseIntent',
    'PurchaseOrchestrator',
    'PurchaseResult',
    'PurchaseState',
    'RejectReason',
    'SaleRecord',
    'SettlementPlan',
    'SettlementReconciler',
]
