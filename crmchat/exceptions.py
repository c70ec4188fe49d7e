"""Domain exception classes for the CRM chat backend.

These exceptions are raised by service-layer code and translated into
HTTP error responses by exception handlers registered in ``main.py``.
"""

from __future__ import annotations


class NotFoundError(Exception):
    """Raised when a requested resource does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ForbiddenError(Exception):
    """Raised when the caller does not own the requested chat."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
