"""
Failure isolation for calls to unreliable collaborators.

Video provisioning and notification dispatch happen after the booking
state change has committed. Their failures are logged and counted, never
raised back into the request that triggered them.
"""
import logging

from apps.core.observability import metrics
from apps.core.observability.events import log_external_call_failed

logger = logging.getLogger(__name__)


def run_best_effort(service, operation, func, *args, entity_ids=None, **kwargs):
    """
    Call ``func(*args, **kwargs)`` and swallow any failure.

    Args:
        service: collaborator label for metrics (video, notification)
        operation: operation label (create_room, booking_confirmation, ...)
        func: the call to make
        entity_ids: ids to attach to the failure log entry

    Returns:
        Whatever ``func`` returns, or None if it raised.
    """
    try:
        return func(*args, **kwargs)
    except Exception as exc:
        metrics.external_call_failures_total.labels(
            service=service,
            operation=operation,
        ).inc()
        log_external_call_failed(service, operation, exc, **(entity_ids or {}))
        logger.warning(
            f'[{service.upper()}] {operation} failed: {exc}',
            exc_info=True,
            extra={'event': 'external_call_failed', 'service': service, 'operation': operation},
        )
        return None
