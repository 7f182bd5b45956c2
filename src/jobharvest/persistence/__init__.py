"""Database persistence for collected job postings."""

from .db import (
    create_db_engine,
    dispose_engines,
    drop_db,
    get_engine,
    get_session,
    init_db,
)
from .models import Base, JobPosting
from .repo import JobRepository, JobStore

__all__ = [
    "Base",
    "JobPosting",
    "JobRepository",
    "JobStore",
    "create_db_engine",
    "dispose_engines",
    "drop_db",
    "get_engine",
    "get_session",
    "init_db",
]
