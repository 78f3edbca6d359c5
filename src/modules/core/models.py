"""Shared persistence primitives.

``BaseModel`` gives every table a time-ordered UUIDv7 key and audit
timestamps.  ``OutboxEvent`` stores the domain events raised by a
fulfillment or payment write in the same transaction as that write.
"""

from __future__ import annotations

import uuid6
from django.db import models
from django.utils import timezone

from shared.domain.events import DomainEvent


class BaseModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid6.uuid7, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs) -> None:
        # auto_now is skipped when update_fields omits it
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "updated_at"]
        super().save(*args, **kwargs)


class EventTopic(models.TextChoices):
    FULFILLMENT = "fulfillment", "Fulfillment"
    PAYMENTS = "payments", "Payments"


class EventStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PUBLISHED = "PUBLISHED", "Published"
    FAILED = "FAILED", "Failed"


class OutboxEventQuerySet(models.QuerySet):
    def pending(self) -> OutboxEventQuerySet:
        return self.filter(status=EventStatus.PENDING).order_by("created_at")

    def for_sub_order(self, sub_order_id) -> OutboxEventQuerySet:
        return self.filter(sub_order_id=str(sub_order_id))


class OutboxEvent(BaseModel):
    """A domain event waiting for an external relay.

    In-process handlers receive the event once the enclosing transaction
    commits; the row stays ``PENDING`` until a relay picks it up and calls
    ``mark_as_published`` or ``mark_as_failed``.
    """

    event_type = models.CharField(max_length=100)
    topic = models.CharField(max_length=32, choices=EventTopic.choices)
    aggregate_id = models.CharField(max_length=64)
    sub_order_id = models.CharField(max_length=64, blank=True, default="")
    payload = models.JSONField()
    status = models.CharField(
        max_length=20, choices=EventStatus.choices, default=EventStatus.PENDING
    )
    processed_at = models.DateTimeField(null=True, blank=True, default=None)
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveIntegerField(default=0)

    objects = OutboxEventQuerySet.as_manager()

    class Meta:
        db_table = "outbox_events"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="outbox_status_created_idx"),
            models.Index(fields=["aggregate_id"], name="outbox_aggregate_id_idx"),
            models.Index(fields=["sub_order_id"], name="outbox_sub_order_idx"),
        ]

    @classmethod
    def enqueue(cls, event: DomainEvent, topic: str) -> OutboxEvent:
        sub_order_id = getattr(event, "sub_order_id", None)
        return cls.objects.create(
            event_type=event.event_name,
            topic=topic,
            aggregate_id=str(event.aggregate_id),
            sub_order_id=str(sub_order_id) if sub_order_id else "",
            payload=event.to_payload(),
        )

    def mark_as_published(self) -> None:
        self.status = EventStatus.PUBLISHED
        self.processed_at = timezone.now()
        self.save(update_fields=["status", "processed_at"])

    def mark_as_failed(self, error: str) -> None:
        self.status = EventStatus.FAILED
        self.error_message = error
        self.retry_count += 1
        self.save(update_fields=["status", "error_message", "retry_count"])

    def __str__(self) -> str:
        return f"{self.topic}:{self.event_type} [{self.status}]"
