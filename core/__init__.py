"""
Core Framework for Use Cases.

This module provides the base classes and helpers that every use case
builds on. The layered architecture keeps:

1. Domain Layer - Pure business rules, no I/O
2. Data Layer - Repository pattern for data access
3. Observability - Where locally recovered errors are reported
"""

from .domain import (
    DomainService,
    PolicyDecision,
    PolicyEngine,
    PolicyResult,
    ValidationError,
    Validator,
)
from .data import CachingRepository, QueryOptions, QueryResult, ReadOnlyRepository, Repository
from .observability import ErrorReporter, LoggingErrorReporter

__all__ = [
    # Domain
    "DomainService",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyResult",
    "ValidationError",
    "Validator",
    # Data
    "CachingRepository",
    "QueryOptions",
    "QueryResult",
    "ReadOnlyRepository",
    "Repository",
    # Observability
    "ErrorReporter",
    "LoggingErrorReporter",
]
