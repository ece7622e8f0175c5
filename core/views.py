from django.conf import settings
from django.http import JsonResponse


def home(request):
    return JsonResponse({
        "service": "artmarket-settlement",
        "network": settings.HEDERA_NETWORK,
        "endpoints": {
            "challenge": "/api/auth/message",
            "verify": "/api/auth/verify",
            "me": "/api/auth/me",
            "purchase": "/api/nfts/<id>/purchase",
            "purchases": "/api/purchases/my-purchases",
            "sales": "/api/sales/my-sales",
        },
    })


def health(request):
    return JsonResponse({"status": "ok"})
