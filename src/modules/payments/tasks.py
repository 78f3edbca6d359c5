"""Celery tasks for the payments module."""

import structlog
from celery import shared_task

from modules.payments.exceptions import PaymentError

logger = structlog.get_logger(__name__)


@shared_task(name="payments.poll_transfer")
def poll_transfer(session_key, correlation_id=None):
    """Poll a started transfer to settlement, failure, cancel or timeout.

    Terminal outcomes are persisted on the session before the coordinator
    raises, so they are reported here rather than retried.  Logs carry the
    correlation id of the request that verified the code.
    """
    from modules.payments.services import PaymentService

    context = {"correlation_id": correlation_id} if correlation_id else {}
    with structlog.contextvars.bound_contextvars(**context):
        try:
            record = PaymentService().poll(session_key)
        except PaymentError as exc:
            logger.warning("poll_transfer.finished", outcome=exc.kind, error=str(exc))
            return {"status": exc.kind}
    return {
        "status": "settled",
        "transaction_id": str(record.transaction_id),
        "replayed": record.replayed,
    }
