"""
Settlement amounts for a purchase.

All arithmetic is ``Decimal`` quantized to the ledger's smallest unit
(1 tinybar = 1e-8 HBAR), so ``fee + seller == gross`` holds exactly and the
three value legs of the ledger transfer sum to zero.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Union

from artmarket.errors import ValidationError


PLATFORM_FEE_PERCENT = Decimal('2')
HBAR_QUANTUM = Decimal('0.00000001')
TINYBARS_PER_HBAR = 100_000_000

Amount = Union[Decimal, int, str]


def to_hbar(value: Amount) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid amount: {value!r}') from exc
    if not amount.is_finite():
        raise ValidationError(f'Invalid amount: {value!r}')
    return amount.quantize(HBAR_QUANTUM, rounding=ROUND_HALF_EVEN)


def to_tinybars(amount: Decimal) -> int:
    return int((amount * TINYBARS_PER_HBAR).to_integral_exact())


@dataclass(frozen=True)
class SettlementPlan:
    gross_price: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    seller_amount: Decimal

    @classmethod
    def compute(cls, gross_price: Amount, fee_percent: Amount = PLATFORM_FEE_PERCENT) -> 'SettlementPlan':
        gross = to_hbar(gross_price)
        if gross <= 0:
            raise ValidationError('Price must be positive')
        percent = Decimal(str(fee_percent))
        if percent < 0 or percent > 100:
            raise ValidationError(f'Fee percent out of range: {percent}')

        fee = (gross * percent / Decimal(100)).quantize(HBAR_QUANTUM, rounding=ROUND_HALF_EVEN)
        return cls(
            gross_price=gross,
            fee_percent=percent,
            fee_amount=fee,
            seller_amount=gross - fee,
        )

    @property
    def gross_tinybars(self) -> int:
        return to_tinybars(self.gross_price)

    @property
    def fee_tinybars(self) -> int:
        return to_tinybars(self.fee_amount)

    @property
    def seller_tinybars(self) -> int:
        return to_tinybars(self.seller_amount)
