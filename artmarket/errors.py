"""
Error taxonomy for wallet authentication and purchase settlement.

Every error carries a stable ``code`` for clients and the HTTP status the
boundary layer should answer with.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base error for marketplace failures."""

    code = 'MARKETPLACE_ERROR'
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context: Dict[str, Any] = context

    def to_response(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.message,
            'code': self.code,
        }


class ValidationError(MarketplaceError):
    """Malformed input. Raised before any external call."""

    code = 'VALIDATION_ERROR'
    http_status = 400


class AuthError(MarketplaceError):
    """Bad or expired challenge, signature or session token."""

    code = 'AUTH_ERROR'
    http_status = 401


class ChallengeRejected(AuthError):
    code = 'CHALLENGE_REJECTED'


class WalletMismatch(AuthError):
    code = 'WALLET_MISMATCH'


class SignatureRejected(AuthError):
    code = 'INVALID_SIGNATURE'


class TokenExpired(AuthError):
    """The session token is past expiry; the client should sign in again."""

    code = 'TOKEN_EXPIRED'


class TokenInvalid(AuthError):
    code = 'TOKEN_INVALID'


class PermissionDenied(MarketplaceError):
    code = 'PERMISSION_DENIED'
    http_status = 403


class NotFoundError(MarketplaceError):
    code = 'NOT_FOUND'
    http_status = 404


class ConflictError(MarketplaceError):
    """Duplicate in-flight purchase, self-purchase or a locked asset."""

    code = 'CONFLICT'
    http_status = 409


class LedgerError(MarketplaceError):
    """Submission or confirmation failure on the ledger."""

    code = 'LEDGER_ERROR'
    http_status = 502

    def __init__(self, message: str, code: Optional[str] = None,
                 transaction_id: Optional[str] = None, **context: Any):
        super().__init__(message, code, **context)
        self.transaction_id = transaction_id


class InsufficientBalance(LedgerError):
    code = 'INSUFFICIENT_BALANCE'
    http_status = 400


class InvalidLedgerSignature(LedgerError):
    code = 'INVALID_LEDGER_SIGNATURE'
    http_status = 400


class InvalidAssetReference(LedgerError):
    code = 'INVALID_ASSET_REFERENCE'
    http_status = 400


class TransactionFailed(LedgerError):
    """The mirror reported a non-SUCCESS result for the transaction."""

    code = 'TRANSACTION_FAILED'


class ConfirmationTimeout(LedgerError):
    code = 'CONFIRMATION_TIMEOUT'
    http_status = 504


class UnknownLedgerFailure(LedgerError):
    code = 'UNKNOWN_LEDGER_FAILURE'


class PersistenceError(MarketplaceError):
    """
    A write to the system of record failed after the ledger confirmed.

    The ledger already holds the new ownership and balances, so this must not
    be presented as a retryable failure: a retry would attempt a second
    transfer for an asset the buyer may already own.
    """

    code = 'SETTLEMENT_RECORDING_PENDING'
    http_status = 202

    def __init__(self, message: str, code: Optional[str] = None,
                 transaction_id: Optional[str] = None, **context: Any):
        super().__init__(message, code, **context)
        self.transaction_id = transaction_id

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body['transactionId'] = self.transaction_id
        body['reconciliationPending'] = True
        return body
