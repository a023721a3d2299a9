"""
Error taxonomy for the relay.

- InvalidPayload: malformed webhook body, rejected at the boundary.
- ProviderError: an outbound send failed; aborts the reply path of one event.
- PersistenceError: the store is unreachable or rejected a write; logged and
  absorbed by the bookkeeping call sites.
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class InvalidPayload(RelayError):
    """Webhook body does not have the expected envelope structure."""


class ProviderError(RelayError):
    """The messaging provider rejected or failed an outbound send."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class PersistenceError(RelayError):
    """A store operation failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
