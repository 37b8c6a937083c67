"""
Base Service Class.

Minimal base class standardizing the logger pattern for the backend
facing services.  Subclasses add their collaborators via ``__init__``.
"""

from __future__ import annotations

from edu_client.logger import StructuredLogger


class BaseService:
    """Base class for services that talk to the backend. Provides a logger."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
