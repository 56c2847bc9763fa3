"""Database models and storage layer."""

from .database import Base, init_database, create_tables
from .models import WorkflowModel, WorkflowRunModel

__all__ = [
    "Base",
    "init_database",
    "create_tables",
    "WorkflowModel",
    "WorkflowRunModel",
]
