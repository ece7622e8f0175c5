"""
Request bodies for the HTTP endpoints.
"""
from decimal import Decimal
from typing import Any, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from artmarket.errors import ValidationError


ModelT = TypeVar('ModelT', bound=BaseModel)


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChallengeRequest(_Request):
    wallet_address: str = Field(alias='walletAddress', min_length=1)


class VerifyRequest(_Request):
    wallet_address: str = Field(alias='walletAddress', min_length=1)
    message: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    public_key: Optional[str] = Field(default=None, alias='publicKey')
    evm_address: Optional[str] = Field(default=None, alias='evmAddress')

    @model_validator(mode='after')
    def _require_verifying_identity(self) -> 'VerifyRequest':
        if not self.public_key and not self.evm_address:
            raise ValueError('publicKey or evmAddress is required')
        return self


class PurchaseRequest(_Request):
    expected_price: Decimal = Field(alias='expectedPrice', gt=0)


def parse_request(model: Type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        logger.debug('pydantic validation failed: {}', exc)
        first = exc.errors()[0] if exc.errors() else {}
        field = '.'.join(str(part) for part in first.get('loc', ()))
        detail = first.get('msg', 'invalid value')
        message = f'{field}: {detail}' if field else detail
        raise ValidationError(f'Invalid request: {message}') from exc
