"""Unit tests for BaseModel, exercised through a concrete project model."""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from modules.core.models import EventTopic, OutboxEvent
from modules.wallets.models import Wallet

pytestmark = pytest.mark.unit


def _row(**overrides) -> OutboxEvent:
    fields = {
        "event_type": "ProofRecorded",
        "topic": EventTopic.FULFILLMENT,
        "aggregate_id": "batch-1",
        "payload": {},
    }
    fields.update(overrides)
    return OutboxEvent.objects.create(**fields)


def test_ids_are_uuid7():
    first, second = _row(), _row()

    assert first.id.version == 7
    assert first.id != second.id


def test_id_is_not_editable():
    assert Wallet._meta.get_field("id").editable is False


def test_updated_at_follows_saves():
    with freeze_time(timezone.now()) as frozen:
        row = _row()
        created = row.created_at

        frozen.tick(timedelta(seconds=5))
        row.error_message = "retry"
        row.save()
        row.refresh_from_db()

    assert row.created_at == created
    assert row.updated_at == created + timedelta(seconds=5)


def test_update_fields_save_still_touches_updated_at():
    with freeze_time(timezone.now()) as frozen:
        row = _row()
        before = row.updated_at

        frozen.tick(timedelta(seconds=5))
        row.retry_count = 3
        row.save(update_fields=["retry_count"])
        row.refresh_from_db()

    assert row.retry_count == 3
    assert row.updated_at == before + timedelta(seconds=5)
