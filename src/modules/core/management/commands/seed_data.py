from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from modules.fulfillment.constants import OrderKindCode
from modules.fulfillment.models import Batch
from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.wallets.models import Wallet


def _items(*lines: tuple) -> List[Dict[str, Any]]:
    return [
        {"product_id": sku, "product_name": name, "quantity": qty, "unit_price": price}
        for sku, name, qty, price in lines
    ]


SEED_BATCHES: List[Dict[str, Any]] = [
    {
        "customer_id": "cust-001",
        "delivery_address_id": "addr-001",
        "sub_orders": [
            {
                "shop_id": "shop-kimironko",
                "service_fee": "300.00",
                "delivery_fee": "1000.00",
                "items": _items(
                    ("SKU-MILK", "Milk 1L", "2", "800.00"),
                    ("SKU-BREAD", "Bread", "1", "1200.00"),
                    ("SKU-EGGS", "Eggs (tray)", "1", "4500.00"),
                ),
            },
        ],
    },
    {
        "customer_id": "cust-002",
        "delivery_address_id": "addr-002",
        "sub_orders": [
            {
                "shop_id": "shop-nyarutarama",
                "service_fee": "250.00",
                "delivery_fee": "800.00",
                "items": _items(
                    ("SKU-RICE", "Rice 5kg", "1", "7000.00"),
                    ("SKU-TOMATO", "Tomatoes (kg)", "1.5", "1000.00"),
                ),
            },
            {
                "shop_id": "shop-reel-kicukiro",
                "kind": OrderKindCode.REEL_FROM_SHOP,
                "reel_id": "reel-042",
                "reel_unit_price": "3500.00",
                "reel_quantity": "2",
                "service_fee": "150.00",
                "delivery_fee": "500.00",
            },
            {
                "shop_id": "restaurant-remera",
                "kind": OrderKindCode.RESTAURANT,
                "origin_id": "restaurant-remera",
                "service_fee": "200.00",
                "delivery_fee": "700.00",
                "items": _items(("MEAL-BROCHETTE", "Brochette", "3", "2000.00")),
            },
        ],
    },
]


class Command(BaseCommand):
    help = "Seed database with a shopper, a wallet and demo batches."

    def handle(self, *args, **options):
        self.stdout.write("Seeding development data...")

        shopper = self._seed_shopper()
        batches_created = self._seed_batches(shopper)

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed completed: shopper={shopper.username}, batches={batches_created}"
            )
        )

    def _seed_shopper(self):
        User = get_user_model()
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")
        shopper, created = User.objects.get_or_create(username="shopper")
        if created:
            shopper.set_password("shopper123")
            shopper.save()
        Wallet.objects.get_or_create(
            shopper=shopper, defaults={"reserved_balance": Decimal("20000.00")}
        )
        return shopper

    def _seed_batches(self, shopper) -> int:
        if Batch.objects.filter(shopper=shopper).exists():
            self.stdout.write("Batches already present, skipping.")
            return 0
        repository = BatchDjangoRepository()
        for data in SEED_BATCHES:
            repository.create({**data, "shopper_id": shopper.pk})
        return len(SEED_BATCHES)
