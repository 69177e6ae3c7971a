"""
Data access failures.

Callers can tell the four failure families apart:

- not-found is never an error (empty QueryResult / SingleResult(data=None))
- QueryValidationError: the caller passed something unusable
- BackendError: the backend or the connection failed
- UnsupportedOperationError: the provider cannot do this at all
"""

from __future__ import annotations


class DataAccessError(Exception):
    """Base class for every error raised by the data layer."""


class ConfigurationError(DataAccessError, ValueError):
    """Missing or invalid provider configuration."""


class QueryValidationError(DataAccessError, ValueError):
    """Invalid arguments rejected before reaching the backend."""


class UnsupportedOperationError(DataAccessError, NotImplementedError):
    """Operation the active provider does not support."""


class BackendError(DataAccessError):
    """
    Failure surfaced by the underlying backend (network, constraint
    violation, permission). The original exception is chained as __cause__.
    """

    def __init__(self, message: str, *, operation: str | None = None, table: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.table = table


class ConnectionFailedError(BackendError):
    """The provider could not establish its backend connection."""


class SubscriptionError(BackendError):
    """A realtime channel could not be set up."""
