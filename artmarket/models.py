from django.db import models
from django.utils import timezone


class Account(models.Model):
    class Role(models.TextChoices):
        BUYER = 'buyer', 'Buyer'
        ARTIST = 'artist', 'Artist'
        ADMIN = 'admin', 'Admin'

    # Hedera account id (0.0.N)
    wallet_address = models.CharField(max_length=50, unique=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BUYER)
    display_name = models.CharField(max_length=100, blank=True, default='')
    email = models.CharField(max_length=255, blank=True, default='')
    profile_picture_url = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return self.wallet_address


class Asset(models.Model):
    # Collection token id, optionally suffixed with the serial (0.0.N or 0.0.N.S)
    token_id = models.CharField(max_length=100, unique=True)
    serial_number = models.IntegerField(null=True, blank=True)
    creator = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name='created_assets', null=True, blank=True)
    owner = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name='owned_assets')
    title = models.CharField(max_length=200)
    price_hbar = models.DecimalField(max_digits=20, decimal_places=8, null=True, blank=True)
    is_listed = models.BooleanField(default=True)
    listed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'{self.title} ({self.token_id})'

    def transfer_to(self, new_owner_id: int) -> None:
        self.owner_id = new_owner_id
        self.is_listed = False
        self.price_hbar = None
        self.listed_at = None


class Sale(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'

    asset = models.ForeignKey(Asset, on_delete=models.PROTECT, related_name='sales')
    seller = models.ForeignKey(Account, on_delete=models.PROTECT, related_name='sales')
    buyer = models.ForeignKey(Account, on_delete=models.PROTECT, related_name='purchases')
    sale_price_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    platform_fee_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    seller_receives_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    # One sale per confirmed ledger transaction
    transaction_id = models.CharField(max_length=100, unique=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.COMPLETED,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']


class SettlementAttempt(models.Model):
    """Journal of purchase attempts, written before the ledger is touched."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SUBMITTED = 'submitted', 'Submitted'
        TIMED_OUT = 'timed_out', 'Timed out'
        CONFIRMED = 'confirmed', 'Confirmed'
        RECONCILIATION_REQUIRED = 'reconciliation_required', 'Reconciliation required'
        PERSISTED = 'persisted', 'Persisted'
        FAILED = 'failed', 'Failed'

    # A later status may skip over a journal write that was lost.
    FORWARD_TRANSITIONS = {
        'pending': {'submitted', 'timed_out', 'confirmed', 'reconciliation_required', 'persisted', 'failed'},
        'submitted': {'timed_out', 'confirmed', 'reconciliation_required', 'persisted', 'failed'},
        'timed_out': {'confirmed', 'reconciliation_required', 'persisted', 'failed'},
        'confirmed': {'reconciliation_required', 'persisted'},
        'reconciliation_required': {'persisted'},
        'persisted': set(),
        'failed': set(),
    }

    asset = models.ForeignKey(Asset, on_delete=models.PROTECT, related_name='settlement_attempts')
    buyer = models.ForeignKey(Account, on_delete=models.PROTECT, related_name='settlement_attempts')
    seller = models.ForeignKey(Account, on_delete=models.PROTECT, related_name='+')
    gross_price_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    fee_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    seller_amount_hbar = models.DecimalField(max_digits=20, decimal_places=8)
    transaction_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PENDING,
    )
    failure_reason = models.CharField(max_length=255, blank=True, default='')
    submitted_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['asset', 'buyer', 'created_at'], name='artmarket_attempt_asset_buyer'),
            models.Index(fields=['status'], name='artmarket_attempt_status'),
        ]

    def can_advance_to(self, status: str) -> bool:
        return status in self.FORWARD_TRANSITIONS.get(self.status, set())

    def advance(self, status: str, transaction_id: str = None, reason: str = '') -> None:
        if not self.can_advance_to(status):
            raise ValueError(f'Illegal settlement transition {self.status} -> {status}')
        self.status = status
        if transaction_id:
            self.transaction_id = transaction_id
        if reason:
            self.failure_reason = reason[:255]
        now = timezone.now()
        if status == self.Status.SUBMITTED:
            self.submitted_at = now
        elif status == self.Status.CONFIRMED:
            self.confirmed_at = now
