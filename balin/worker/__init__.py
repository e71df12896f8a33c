"""
Worker module.
Contains the worker service and the task handler registry.
"""

from balin.worker.handlers import (
    FatalJobError,
    execute_job,
    get_handler,
    list_handlers,
    register_handler,
)
from balin.worker.main import Worker, run

__all__ = [
    "Worker",
    "run",
    "FatalJobError",
    "register_handler",
    "get_handler",
    "list_handlers",
    "execute_job",
]
