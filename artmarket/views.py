"""
HTTP boundary for wallet sign-in and NFT purchases.

Views parse the request, call one component and render the result. Domain
failures are ``MarketplaceError`` subclasses and are rendered as
``{success: false, error, code}`` with the error's HTTP status.
"""
from decimal import Decimal
from typing import Any, Dict

from loguru import logger
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView, exception_handler as drf_exception_handler

from artmarket import services
from artmarket.auth import ClaimedIdentity, Identity
from artmarket.authentication import HasSession
from artmarket.errors import MarketplaceError, NotFoundError
from artmarket.schemas import ChallengeRequest, PurchaseRequest, VerifyRequest, parse_request
from artmarket.settlement import PurchaseIntent, SaleRecord


def _error_response(exc: MarketplaceError) -> Response:
    body = exc.to_response()
    transaction_id = getattr(exc, 'transaction_id', None)
    if transaction_id:
        body['transactionId'] = transaction_id
    current_price = exc.context.get('current_price')
    if current_price is not None:
        body['currentPrice'] = current_price
    return Response(body, status=exc.http_status)


def api_exception_handler(exc, context):
    """Render DRF and marketplace errors in the same envelope."""
    if isinstance(exc, MarketplaceError):
        return _error_response(exc)

    response = drf_exception_handler(exc, context)
    if response is None:
        logger.exception('Unhandled error in {}: {}', context.get('view').__class__.__name__, exc)
        return Response(
            {'success': False, 'error': 'Internal server error', 'code': 'INTERNAL_ERROR'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(exc, APIException):
        codes = exc.get_codes()
        code = codes if isinstance(codes, str) else exc.default_code
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.default_detail)
        response.data = {'success': False, 'error': str(detail), 'code': str(code).upper()}
    return response


def _decimal(value: Decimal) -> str:
    return format(value, 'f')


def _user_payload(identity: Identity) -> Dict[str, Any]:
    payload = {
        'id': identity.user_id,
        'walletAddress': identity.wallet_address,
        'role': identity.role,
    }
    payload.update(identity.profile)
    return payload


def _sale_payload(sale: SaleRecord) -> Dict[str, Any]:
    return {
        'id': sale.id,
        'nftId': sale.asset_id,
        'tokenId': sale.asset_token_id,
        'title': sale.asset_title,
        'sellerId': sale.seller_id,
        'buyerId': sale.buyer_id,
        'salePriceHbar': _decimal(sale.gross_price),
        'platformFeeHbar': _decimal(sale.fee_amount),
        'sellerReceivesHbar': _decimal(sale.seller_amount),
        'transactionId': sale.transaction_id,
        'status': sale.status,
        'createdAt': sale.created_at.isoformat() if sale.created_at else None,
    }


class AuthMessageView(APIView):
    """Issue a sign-in challenge for a wallet."""

    authentication_classes: list = []
    permission_classes: list = []

    def _respond(self, data) -> Response:
        try:
            parsed = parse_request(ChallengeRequest, data)
            auth_service = services.build_auth_service()
            challenge = auth_service.request_challenge(parsed.wallet_address)
        except MarketplaceError as exc:
            return _error_response(exc)

        return Response(
            {
                'success': True,
                'data': {
                    'message': challenge.rendered_message,
                    'expiresInMinutes': auth_service.issuer.ttl_minutes,
                },
            },
            status=status.HTTP_200_OK,
        )

    def get(self, request, *args, **kwargs):
        return self._respond({'walletAddress': request.query_params.get('walletAddress', '')})

    def post(self, request, *args, **kwargs):
        wallet_address = request.data.get('walletAddress') if hasattr(request.data, 'get') else None
        return self._respond({'walletAddress': wallet_address or request.query_params.get('walletAddress', '')})


class AuthVerifyView(APIView):
    """Verify a signed challenge and issue a session token."""

    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        try:
            parsed = parse_request(VerifyRequest, request.data)
            identity = ClaimedIdentity(
                wallet_address=parsed.wallet_address,
                public_key=parsed.public_key,
                evm_address=parsed.evm_address,
            )
            result = services.build_auth_service().sign_in(parsed.message, parsed.signature, identity)
        except MarketplaceError as exc:
            logger.info('Wallet sign-in rejected: {} ({})', exc.message, exc.code)
            return _error_response(exc)

        if result.needs_registration:
            data = {'walletAddress': result.wallet_address}
            if parsed.public_key:
                data['publicKey'] = parsed.public_key
            if parsed.evm_address:
                data['evmAddress'] = parsed.evm_address
            return Response(
                {'success': True, 'needsRegistration': True, 'data': data},
                status=status.HTTP_200_OK,
            )

        logger.info('User authenticated: {} ({})', result.identity.wallet_address, result.identity.role)
        return Response(
            {
                'success': True,
                'needsRegistration': False,
                'data': {
                    'token': result.token,
                    'user': _user_payload(result.identity),
                },
            },
            status=status.HTTP_200_OK,
        )


class MeView(APIView):
    permission_classes = [HasSession]

    def get(self, request, *args, **kwargs):
        identity = services.build_persistence().get_identity(request.user.id)
        if identity is None:
            return _error_response(NotFoundError('User not found'))
        return Response(
            {'success': True, 'data': {'user': _user_payload(identity)}},
            status=status.HTTP_200_OK,
        )


class LogoutView(APIView):
    """Tokens are stateless; logout is recorded for audit only."""

    permission_classes = [HasSession]

    def post(self, request, *args, **kwargs):
        logger.info('User logged out: {}', request.user.wallet_address)
        return Response(
            {'success': True, 'message': 'Logged out successfully'},
            status=status.HTTP_200_OK,
        )


class PurchaseView(APIView):
    permission_classes = [HasSession]

    def post(self, request, asset_id: int, *args, **kwargs):
        try:
            parsed = parse_request(PurchaseRequest, request.data)
        except MarketplaceError as exc:
            return _error_response(exc)

        intent = PurchaseIntent(
            asset_id=asset_id,
            buyer_id=int(request.user.id),
            buyer_wallet_address=request.user.wallet_address,
            expected_price=parsed.expected_price,
        )
        try:
            result = services.build_orchestrator().purchase(intent)
        except MarketplaceError as exc:
            return _error_response(exc)

        if result.error is not None:
            return _error_response(result.error)

        return Response(
            {
                'success': True,
                'data': {
                    'sale': _sale_payload(result.sale),
                    'transactionId': result.transaction_id,
                    'explorerUrl': result.explorer_url,
                },
                'message': 'NFT purchased successfully',
            },
            status=status.HTTP_200_OK,
        )


class MyPurchasesView(APIView):
    permission_classes = [HasSession]

    def get(self, request, *args, **kwargs):
        purchases = services.build_persistence().purchases_for(int(request.user.id))
        return Response(
            {'success': True, 'data': {'purchases': [_sale_payload(sale) for sale in purchases]}},
            status=status.HTTP_200_OK,
        )


class MySalesView(APIView):
    permission_classes = [HasSession]

    def get(self, request, *args, **kwargs):
        sales = services.build_persistence().sales_for(int(request.user.id))
        return Response(
            {'success': True, 'data': {'sales': [_sale_payload(sale) for sale in sales]}},
            status=status.HTTP_200_OK,
        )
