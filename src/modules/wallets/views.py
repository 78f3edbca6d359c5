from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.core.views import ShopperScopedViewMixin
from modules.wallets.serializers import WalletSerializer
from modules.wallets.services import WalletService


class WalletView(ShopperScopedViewMixin, APIView):
    """GET /api/v1/wallet/ balances of the requesting shopper."""

    def get(self, request: Request) -> Response:
        wallet = WalletService().get_wallet(self.shopper_id)
        return Response(WalletSerializer(wallet).data)
