"""
Database module.
Contains the connection manager, models, and the job repository.
"""

from balin.db.connection import Database, parse_database_url
from balin.db.models import Base, Job
from balin.db.repository import JobRepository

__all__ = [
    "Database",
    "parse_database_url",
    "Base",
    "Job",
    "JobRepository",
]
