from shared.domain.exceptions import DomainError


class InvoiceNotFound(DomainError):
    """The invoice does not exist or belongs to another shopper's batch."""

    kind = "invoice_not_found"
