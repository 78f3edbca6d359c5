from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.payments"
    label = "payments"

    def ready(self) -> None:
        from modules.payments.events import PaymentAborted, RefundScheduled
        from modules.payments.handlers import payment_aborted_handler, refund_scheduled_handler
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(PaymentAborted, payment_aborted_handler)
        event_bus.subscribe(RefundScheduled, refund_scheduled_handler)
