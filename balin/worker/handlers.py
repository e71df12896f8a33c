"""
Task handler registry.

Handlers must be idempotent - a job may run more than once if its worker
dies and the reaper releases the stale lock.
"""

import logging
import time
from typing import Awaitable, Callable

from balin.types.job import ClaimedJob, JobResult

logger = logging.getLogger(__name__)

# Type alias for task handler functions
JobHandler = Callable[[ClaimedJob], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


class FatalJobError(Exception):
    """
    Raised by a handler when retrying cannot help.

    The job is moved to the ERROR state instead of being retried.
    """

    pass


def register_handler(task_name: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a task handler.

    Args:
        task_name: The task name this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(job: ClaimedJob) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[task_name] = handler
        logger.debug("Registered handler", extra={"task_name": task_name})
        return handler
    return decorator


def unregister_handler(task_name: str) -> None:
    """Remove a handler; unknown names are ignored."""
    _handlers.pop(task_name, None)


def get_handler(task_name: str) -> JobHandler | None:
    """
    Get the handler for a task name.

    Args:
        task_name: The task name.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(task_name)


def list_handlers() -> list[str]:
    """List all registered task names."""
    return list(_handlers.keys())


@register_handler("echo")
async def handle_echo(job: ClaimedJob) -> JobResult:
    """Return the payload unchanged."""
    logger.info(
        "Echo job executing",
        extra={"job_id": job.id, "attempt": job.attempt},
    )
    return JobResult(success=True, output={"echo": job.payload})


async def execute_job(job: ClaimedJob) -> JobResult:
    """
    Run the handler registered for the job's task name.

    Exceptions never escape: a missing handler or FatalJobError yields a
    fatal result, any other exception a retryable failure.

    Args:
        job: The claimed job.

    Returns:
        JobResult with duration_ms filled in.
    """
    handler = get_handler(job.task_name)

    if handler is None:
        logger.error(
            "No handler registered",
            extra={"job_id": job.id, "task_name": job.task_name},
        )
        return JobResult(
            success=False,
            fatal=True,
            error=f"No handler registered for task: {job.task_name}",
        )

    start = time.perf_counter()
    try:
        result = await handler(job)
    except FatalJobError as e:
        logger.warning(
            "Handler raised fatal error",
            extra={"job_id": job.id, "error": str(e)},
        )
        result = JobResult(success=False, fatal=True, error=str(e))
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": job.id, "error": str(e)},
        )
        result = JobResult(success=False, error=f"Handler exception: {e}")

    result.duration_ms = (time.perf_counter() - start) * 1000
    return result
