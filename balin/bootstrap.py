"""
Process bootstrap shared by the worker and reaper entry points.
"""

from balin.config import Settings
from balin.observability.logging import setup_logging
from balin.observability.metrics import setup_metrics
from balin.observability.tracing import instrument_sqlalchemy, setup_tracing
from balin.queue import Queue, create_queue


async def start_services(settings: Settings) -> Queue:
    """
    Set up logging, metrics and tracing, then open the queue.

    Args:
        settings: Process settings.

    Returns:
        A ready Queue owned by the caller.
    """
    setup_logging(settings)
    setup_metrics(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing(settings)

    queue = await create_queue(settings)

    if settings.otel_enabled:
        instrument_sqlalchemy(queue.database.engine.sync_engine)
    return queue
