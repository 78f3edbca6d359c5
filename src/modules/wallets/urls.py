from django.urls import path

from modules.wallets.views import WalletView

urlpatterns = [
    path("wallet/", WalletView.as_view(), name="wallet"),
]
