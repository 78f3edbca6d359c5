from rest_framework import serializers

from modules.wallets.models import Wallet, WalletTransaction


class WalletTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WalletTransaction
        fields = ["id", "type", "amount", "sub_order_id", "description", "created_at"]
        read_only_fields = fields


class WalletSerializer(serializers.ModelSerializer):
    recent_transactions = serializers.SerializerMethodField()

    class Meta:
        model = Wallet
        fields = [
            "id",
            "available_balance",
            "reserved_balance",
            "currency",
            "updated_at",
            "recent_transactions",
        ]
        read_only_fields = fields

    def get_recent_transactions(self, wallet: Wallet):
        rows = wallet.transactions.order_by("-created_at")[:20]
        return WalletTransactionSerializer(rows, many=True).data

