"""
Error reporting seam.

Read paths that degrade instead of raising (pricing, reconciliation) still
need their failures to reach someone. They hand the error to an
ErrorReporter; the default one writes to the standard logging tree, and
deployments can plug in their own collector.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple


class ErrorReporter(ABC):
    """Receives errors that were recovered locally."""

    @abstractmethod
    def report(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        pass


class LoggingErrorReporter(ErrorReporter):
    """Reports errors through the logging module."""

    def __init__(self, logger_name: str = "order_lifecycle.errors"):
        self._logger = logging.getLogger(logger_name)

    def report(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self._logger.error(
            f"{type(error).__name__}: {error} | context={context or {}}",
            exc_info=error,
        )


class CollectingErrorReporter(ErrorReporter):
    """Keeps reported errors in memory, for batch jobs and tests."""

    def __init__(self):
        self.reports: List[Tuple[BaseException, Dict[str, Any]]] = []

    def report(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self.reports.append((error, dict(context or {})))


default_reporter = LoggingErrorReporter()
