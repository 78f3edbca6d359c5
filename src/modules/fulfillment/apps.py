from django.apps import AppConfig


class FulfillmentConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.fulfillment"
    label = "fulfillment"

    def ready(self) -> None:
        from modules.fulfillment.events import (
            ItemFoundStatusChanged,
            ProofRecorded,
            SubOrderStatusChanged,
        )
        from modules.fulfillment.handlers import (
            item_found_status_changed_handler,
            proof_recorded_handler,
            sub_order_status_changed_handler,
        )
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(SubOrderStatusChanged, sub_order_status_changed_handler)
        event_bus.subscribe(ItemFoundStatusChanged, item_found_status_changed_handler)
        event_bus.subscribe(ProofRecorded, proof_recorded_handler)
