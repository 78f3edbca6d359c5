from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.views import ShopperScopedViewMixin
from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.invoices.exceptions import InvoiceNotFound
from modules.invoices.models import Invoice
from modules.invoices.serializers import InvoiceSerializer
from modules.invoices.services import InvoiceGenerator


class InvoiceViewSet(ShopperScopedViewMixin, GenericViewSet):
    queryset = Invoice.objects.none()

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/invoices/{pk}/"""
        invoice = InvoiceGenerator(BatchDjangoRepository()).get(pk)
        if invoice is None or invoice.batch.shopper_id != self.shopper_id:
            raise InvoiceNotFound(f"Invoice {pk} not found.", invoice_id=pk)
        return Response(InvoiceSerializer(invoice).data)
