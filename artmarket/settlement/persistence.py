"""
System of record for purchases.

The orchestrator only talks to ``PersistenceGateway``; the Django
implementation below is the one wired in by ``artmarket.services``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from django.db import transaction
from loguru import logger

from artmarket.auth.service import Identity
from artmarket.errors import PersistenceError
from artmarket.models import Account, Asset, Sale, SettlementAttempt

from .fees import SettlementPlan


@dataclass(frozen=True)
class AssetSnapshot:
    id: int
    token_id: str
    serial_number: Optional[int]
    owner_id: int
    owner_wallet: str
    creator_id: Optional[int]
    title: str
    price: Optional[Decimal]
    is_listed: bool


@dataclass(frozen=True)
class SaleRecord:
    id: int
    asset_id: int
    seller_id: int
    buyer_id: int
    gross_price: Decimal
    fee_amount: Decimal
    seller_amount: Decimal
    transaction_id: str
    status: str
    created_at: Optional[datetime] = None
    asset_title: str = ''
    asset_token_id: str = ''


@dataclass(frozen=True)
class AttemptRecord:
    id: int
    asset_id: int
    buyer_id: int
    seller_id: int
    plan: SettlementPlan
    transaction_id: Optional[str]
    status: str
    submitted_at: Optional[datetime] = None


class PersistenceGateway(ABC):
    """Storage operations the purchase pipeline depends on."""

    @abstractmethod
    def get_asset_for_purchase(self, asset_id: int) -> Optional[AssetSnapshot]:
        pass

    @abstractmethod
    def update_asset_ownership(self, asset_id: int, new_owner_id: int, expected_owner_id: int) -> None:
        """
        Move ownership to ``new_owner_id``, unlist and clear the price.

        Only applies when the current owner is ``expected_owner_id``; a row
        already owned by ``new_owner_id`` is left as is.

        Raises:
            PersistenceError: The asset is owned by someone else
        """
        pass

    @abstractmethod
    def insert_sale_record(self, asset_id: int, seller_id: int, buyer_id: int,
                           plan: SettlementPlan, transaction_id: str) -> SaleRecord:
        """Insert a completed sale, or return the one already stored for ``transaction_id``."""
        pass

    @abstractmethod
    def find_recent_sale(self, asset_id: int, buyer_id: int, since: datetime) -> Optional[SaleRecord]:
        pass

    @abstractmethod
    def record_attempt(self, asset_id: int, buyer_id: int, seller_id: int, plan: SettlementPlan) -> int:
        pass

    @abstractmethod
    def advance_attempt(self, attempt_id: int, status: str,
                        transaction_id: Optional[str] = None, reason: str = '') -> None:
        pass

    @abstractmethod
    def has_recent_attempt(self, asset_id: int, buyer_id: int, since: datetime) -> bool:
        pass

    @abstractmethod
    def has_unresolved_settlement(self, asset_id: int) -> bool:
        pass

    @abstractmethod
    def attempts_needing_reconciliation(self, submitted_before: Optional[datetime] = None) -> List[AttemptRecord]:
        pass

    @abstractmethod
    def find_identity_by_wallet(self, wallet_address: str) -> Optional[Identity]:
        pass

    @abstractmethod
    def get_identity(self, user_id: str) -> Optional[Identity]:
        pass

    @abstractmethod
    def purchases_for(self, user_id: int) -> List[SaleRecord]:
        pass

    @abstractmethod
    def sales_for(self, user_id: int) -> List[SaleRecord]:
        pass

    def commit_purchase(self, attempt_id: int, asset: AssetSnapshot, buyer_id: int,
                        plan: SettlementPlan, transaction_id: str) -> SaleRecord:
        """Ownership update and sale insert as one logical commit."""
        self.update_asset_ownership(asset.id, buyer_id, asset.owner_id)
        sale = self.insert_sale_record(asset.id, asset.owner_id, buyer_id, plan, transaction_id)
        self.advance_attempt(attempt_id, SettlementAttempt.Status.PERSISTED, transaction_id=transaction_id)
        return sale


def _sale_record(sale: Sale) -> SaleRecord:
    return SaleRecord(
        id=sale.id,
        asset_id=sale.asset_id,
        seller_id=sale.seller_id,
        buyer_id=sale.buyer_id,
        gross_price=sale.sale_price_hbar,
        fee_amount=sale.platform_fee_hbar,
        seller_amount=sale.seller_receives_hbar,
        transaction_id=sale.transaction_id,
        status=sale.status,
        created_at=sale.created_at,
        asset_title=sale.asset.title,
        asset_token_id=sale.asset.token_id,
    )


def _identity(account: Account) -> Identity:
    return Identity(
        user_id=str(account.id),
        wallet_address=account.wallet_address,
        role=account.role,
        profile={
            'displayName': account.display_name,
            'email': account.email,
            'profilePictureUrl': account.profile_picture_url,
        },
    )


class DjangoPersistenceGateway(PersistenceGateway):
    UNRESOLVED_STATUSES = (
        SettlementAttempt.Status.SUBMITTED,
        SettlementAttempt.Status.TIMED_OUT,
        SettlementAttempt.Status.CONFIRMED,
        SettlementAttempt.Status.RECONCILIATION_REQUIRED,
    )

    def get_asset_for_purchase(self, asset_id: int) -> Optional[AssetSnapshot]:
        asset = Asset.objects.select_related('owner').filter(pk=asset_id).first()
        if asset is None:
            return None
        return AssetSnapshot(
            id=asset.id,
            token_id=asset.token_id,
            serial_number=asset.serial_number,
            owner_id=asset.owner_id,
            owner_wallet=asset.owner.wallet_address,
            creator_id=asset.creator_id,
            title=asset.title,
            price=asset.price_hbar,
            is_listed=asset.is_listed,
        )

    def update_asset_ownership(self, asset_id: int, new_owner_id: int, expected_owner_id: int) -> None:
        with transaction.atomic():
            asset = Asset.objects.select_for_update().get(pk=asset_id)
            if asset.owner_id == new_owner_id:
                logger.info('Asset {} already owned by {}', asset_id, new_owner_id)
                return
            if asset.owner_id != expected_owner_id:
                raise PersistenceError(
                    f'Asset {asset_id} owner changed during settlement',
                    asset_id=asset_id,
                    expected_owner_id=expected_owner_id,
                    actual_owner_id=asset.owner_id,
                )
            asset.transfer_to(new_owner_id)
            asset.save(update_fields=['owner', 'is_listed', 'price_hbar', 'listed_at', 'updated_at'])

    def insert_sale_record(self, asset_id: int, seller_id: int, buyer_id: int,
                           plan: SettlementPlan, transaction_id: str) -> SaleRecord:
        with transaction.atomic():
            existing = Sale.objects.select_related('asset').filter(transaction_id=transaction_id).first()
            if existing is not None:
                logger.info('Sale for transaction {} already recorded', transaction_id)
                return _sale_record(existing)
            sale = Sale(
                asset_id=asset_id,
                seller_id=seller_id,
                buyer_id=buyer_id,
                sale_price_hbar=plan.gross_price,
                platform_fee_hbar=plan.fee_amount,
                seller_receives_hbar=plan.seller_amount,
                transaction_id=transaction_id,
                status=Sale.Status.COMPLETED,
            )
            sale.save(force_insert=True)
        return _sale_record(Sale.objects.select_related('asset').get(pk=sale.pk))

    def commit_purchase(self, attempt_id: int, asset: AssetSnapshot, buyer_id: int,
                        plan: SettlementPlan, transaction_id: str) -> SaleRecord:
        with transaction.atomic():
            return super().commit_purchase(attempt_id, asset, buyer_id, plan, transaction_id)

    def find_recent_sale(self, asset_id: int, buyer_id: int, since: datetime) -> Optional[SaleRecord]:
        sale = (
            Sale.objects.select_related('asset')
            .filter(asset_id=asset_id, buyer_id=buyer_id, created_at__gte=since)
            .first()
        )
        return _sale_record(sale) if sale else None

    def record_attempt(self, asset_id: int, buyer_id: int, seller_id: int, plan: SettlementPlan) -> int:
        attempt = SettlementAttempt.objects.create(
            asset_id=asset_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            gross_price_hbar=plan.gross_price,
            fee_hbar=plan.fee_amount,
            seller_amount_hbar=plan.seller_amount,
        )
        return attempt.id

    def advance_attempt(self, attempt_id: int, status: str,
                        transaction_id: Optional[str] = None, reason: str = '') -> None:
        with transaction.atomic():
            attempt = SettlementAttempt.objects.select_for_update().get(pk=attempt_id)
            if attempt.status == status:
                return
            attempt.advance(status, transaction_id=transaction_id, reason=reason)
            attempt.save()

    def has_recent_attempt(self, asset_id: int, buyer_id: int, since: datetime) -> bool:
        return SettlementAttempt.objects.filter(
            asset_id=asset_id, buyer_id=buyer_id, created_at__gte=since,
        ).exists()

    def has_unresolved_settlement(self, asset_id: int) -> bool:
        return SettlementAttempt.objects.filter(
            asset_id=asset_id, status__in=self.UNRESOLVED_STATUSES,
        ).exists()

    def attempts_needing_reconciliation(self, submitted_before: Optional[datetime] = None) -> List[AttemptRecord]:
        statuses = [
            SettlementAttempt.Status.TIMED_OUT,
            SettlementAttempt.Status.CONFIRMED,
            SettlementAttempt.Status.RECONCILIATION_REQUIRED,
        ]
        queryset = SettlementAttempt.objects.filter(status__in=statuses)
        if submitted_before is not None:
            stale_submitted = SettlementAttempt.objects.filter(
                status=SettlementAttempt.Status.SUBMITTED,
                submitted_at__lt=submitted_before,
            )
            queryset = queryset | stale_submitted
        return [
            AttemptRecord(
                id=attempt.id,
                asset_id=attempt.asset_id,
                buyer_id=attempt.buyer_id,
                seller_id=attempt.seller_id,
                plan=SettlementPlan(
                    gross_price=attempt.gross_price_hbar,
                    fee_percent=(attempt.fee_hbar * 100 / attempt.gross_price_hbar).normalize(),
                    fee_amount=attempt.fee_hbar,
                    seller_amount=attempt.seller_amount_hbar,
                ),
                transaction_id=attempt.transaction_id,
                status=attempt.status,
                submitted_at=attempt.submitted_at,
            )
            for attempt in queryset.order_by('created_at')
        ]

    def find_identity_by_wallet(self, wallet_address: str) -> Optional[Identity]:
        account = Account.objects.filter(wallet_address=wallet_address).first()
        return _identity(account) if account else None

    def get_identity(self, user_id: str) -> Optional[Identity]:
        if not str(user_id).isdigit():
            return None
        account = Account.objects.filter(pk=user_id).first()
        return _identity(account) if account else None

    def purchases_for(self, user_id: int) -> List[SaleRecord]:
        return [_sale_record(sale) for sale in Sale.objects.select_related('asset').filter(buyer_id=user_id)]

    def sales_for(self, user_id: int) -> List[SaleRecord]:
        return [_sale_record(sale) for sale in Sale.objects.select_related('asset').filter(seller_id=user_id)]
