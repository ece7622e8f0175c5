"""
Builds the auth and settlement components from Django settings.

Components never read settings themselves; everything they need is passed in
here, so tests construct them directly with fakes.
"""
from decimal import Decimal
from typing import Any, Dict

from django.conf import settings

from artmarket.auth import ChallengeIssuer, SessionTokenCodec, SignatureVerifier, WalletAuthService
from artmarket.ledger import ConsensusWatcher, HederaLedgerGateway, mirror_base_url
from artmarket.settlement import (
    CacheAssetLock,
    DjangoPersistenceGateway,
    PurchaseConfig,
    PurchaseOrchestrator,
    SettlementReconciler,
)


def _get_ledger_config() -> Dict[str, Any]:
    """Ledger configuration from Django settings."""
    network = getattr(settings, 'HEDERA_NETWORK', 'testnet')
    operator_id = getattr(settings, 'HEDERA_OPERATOR_ID', '')
    return {
        'network': network,
        'operator_id': operator_id,
        'operator_key': getattr(settings, 'HEDERA_OPERATOR_KEY', ''),
        'treasury_account_id': getattr(settings, 'HEDERA_TREASURY_ACCOUNT_ID', '') or operator_id,
        'mirror_url': getattr(settings, 'HEDERA_MIRROR_URL', '') or mirror_base_url(network),
    }


def _get_purchase_config() -> PurchaseConfig:
    ledger_config = _get_ledger_config()
    return PurchaseConfig(
        treasury_account_id=ledger_config['treasury_account_id'],
        fee_percent=Decimal(str(getattr(settings, 'PURCHASE_FEE_PERCENT', PurchaseConfig.fee_percent))),
        price_tolerance=Decimal(str(getattr(settings, 'PURCHASE_PRICE_TOLERANCE', PurchaseConfig.price_tolerance))),
        duplicate_window_minutes=getattr(settings, 'PURCHASE_DUPLICATE_WINDOW_MINUTES', 5),
        baseline_seconds=getattr(settings, 'MIRROR_BASELINE_SECONDS', 4),
        max_retries=getattr(settings, 'MIRROR_MAX_RETRIES', 10),
        retry_delay_ms=getattr(settings, 'MIRROR_RETRY_DELAY_MS', 2000),
    )


def build_token_codec() -> SessionTokenCodec:
    return SessionTokenCodec(
        secret=getattr(settings, 'SESSION_TOKEN_SECRET', '') or settings.SECRET_KEY,
        ttl_seconds=getattr(settings, 'SESSION_TOKEN_TTL_SECONDS', 7 * 24 * 3600),
        algorithm=getattr(settings, 'SESSION_TOKEN_ALGORITHM', 'HS256'),
    )


def build_persistence() -> DjangoPersistenceGateway:
    return DjangoPersistenceGateway()


def build_auth_service() -> WalletAuthService:
    return WalletAuthService(
        issuer=ChallengeIssuer(
            app_name=getattr(settings, 'CHALLENGE_APP_NAME', 'AfriArt'),
            ttl_millis=getattr(settings, 'CHALLENGE_TTL_SECONDS', 300) * 1000,
        ),
        verifier=SignatureVerifier(),
        codec=build_token_codec(),
        identity_lookup=build_persistence().find_identity_by_wallet,
    )


def build_watcher() -> ConsensusWatcher:
    return ConsensusWatcher(
        base_url=_get_ledger_config()['mirror_url'],
        request_timeout=getattr(settings, 'MIRROR_REQUEST_TIMEOUT_SECONDS', 10),
    )


def build_ledger() -> HederaLedgerGateway:
    return HederaLedgerGateway(_get_ledger_config())


def build_orchestrator() -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        persistence=build_persistence(),
        ledger=build_ledger(),
        watcher=build_watcher(),
        config=_get_purchase_config(),
        lock=CacheAssetLock(timeout=getattr(settings, 'PURCHASE_LOCK_SECONDS', 120)),
    )


def build_reconciler() -> SettlementReconciler:
    return SettlementReconciler(
        persistence=build_persistence(),
        watcher=build_watcher(),
        max_retries=getattr(settings, 'MIRROR_MAX_RETRIES', 10),
        retry_delay_ms=getattr(settings, 'MIRROR_RETRY_DELAY_MS', 2000),
    )
