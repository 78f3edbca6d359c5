"""Outbox + in-process dispatch of domain events.

Events are written to ``OutboxEvent`` inside the caller's transaction and
handed to the in-memory bus only after that transaction commits, so
handlers never observe state that is later rolled back.
"""

from __future__ import annotations

from typing import Iterable, List

from django.db import transaction

from modules.core.models import OutboxEvent
from shared.domain.events import DomainEvent
from shared.infrastructure.bus import event_bus


def dispatch(events: Iterable[DomainEvent], topic: str) -> List[DomainEvent]:
    pending = list(events)
    for event in pending:
        OutboxEvent.enqueue(event, topic)
    if pending:
        transaction.on_commit(lambda: event_bus.publish_all(pending))
    return pending
