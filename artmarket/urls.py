from django.urls import path

from artmarket.views import (
    AuthMessageView,
    AuthVerifyView,
    LogoutView,
    MeView,
    MyPurchasesView,
    MySalesView,
    PurchaseView,
)

app_name = 'artmarket'

urlpatterns = [
    path('auth/message', AuthMessageView.as_view(), name='auth-message'),
    path('auth/verify', AuthVerifyView.as_view(), name='auth-verify'),
    path('auth/me', MeView.as_view(), name='auth-me'),
    path('auth/logout', LogoutView.as_view(), name='auth-logout'),
    path('nfts/<int:asset_id>/purchase', PurchaseView.as_view(), name='purchase'),
    path('purchases/my-purchases', MyPurchasesView.as_view(), name='my-purchases'),
    path('sales/my-sales', MySalesView.as_view(), name='my-sales'),
]
