"""
Shared infrastructure for the ledger service.

The importable surface here is what the ledger app uses without touching
the app registry: the service base class, its result wrapper and the
error hierarchy that the API layer maps to HTTP status codes.

Models and model mixins live in core.models and core.model_mixins; they
are not re-exported because importing them here would load Django
models before the app registry is ready.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from .services import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
]
