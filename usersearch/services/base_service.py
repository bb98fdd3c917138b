"""
Base Service Class.

Services receive their logger, repositories and store through __init__;
this base only holds the logger and times operations for debug output.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from usersearch.logger import StructuredLogger


class BaseService:
    """Base class for all service classes. Provides a logger."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger

    @contextmanager
    def _timed(self, operation: str) -> Iterator[None]:
        """Log how long the ``with`` block took, at DEBUG level."""
        if not self._logger.is_enabled_for(logging.DEBUG):
            yield
            return
        started = time.perf_counter()
        try:
            yield
        finally:
            self._logger.debug(
                "%s took %.1f ms", operation, (time.perf_counter() - started) * 1000,
                extra={"operation": operation},
            )
