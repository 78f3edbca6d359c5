from django.apps import AppConfig


class InvoicesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.invoices"
    label = "invoices"

    def ready(self) -> None:
        from modules.invoices.handlers import payment_settled_invoice_handler
        from modules.payments.events import PaymentSettled
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(PaymentSettled, payment_settled_invoice_handler)
