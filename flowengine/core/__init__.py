"""Core workflow node engine components."""

from .exceptions import (
    WorkflowEngineError,
    WorkflowValidationError,
    MissingFieldError,
    ReferenceResolutionError,
    UnsupportedNodeTypeError,
    NodeExecutionError,
    IntegrationError,
    RunStateError,
    NotFoundError,
    EventVerificationError,
    WorkflowInactiveError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "WorkflowValidationError",
    "MissingFieldError",
    "ReferenceResolutionError",
    "UnsupportedNodeTypeError",
    "NodeExecutionError",
    "IntegrationError",
    "RunStateError",
    "NotFoundError",
    "EventVerificationError",
    "WorkflowInactiveError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
