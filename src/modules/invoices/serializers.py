from rest_framework import serializers

from modules.invoices.models import Invoice


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "sub_order_id",
            "batch_id",
            "customer_id",
            "items",
            "subtotal",
            "service_fee",
            "delivery_fee",
            "tax",
            "total_amount",
            "status",
            "proof_ref",
            "created_at",
        ]
        read_only_fields = fields
