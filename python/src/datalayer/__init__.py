"""
datalayer: provider-agnostic data access for the admin panel.

Exposes the DataClient facade, the provider contract and the repositories.
"""

from .client import DataClient
from .config.settings import Settings
from .db import (
    ChangeEvent,
    CreateOptions,
    DataProvider,
    DeleteOptions,
    FindOptions,
    OrderBy,
    RealtimeProvider,
    Subscription,
    UpdateOptions,
    create_provider,
)
from .errors import (
    BackendError,
    ConfigurationError,
    ConnectionFailedError,
    DataAccessError,
    QueryValidationError,
    SubscriptionError,
    UnsupportedOperationError,
)

__version__ = "0.1.0"

__all__ = [
    "DataClient",
    "Settings",
    "create_provider",
    "DataProvider",
    "RealtimeProvider",
    "ChangeEvent",
    "CreateOptions",
    "DeleteOptions",
    "FindOptions",
    "OrderBy",
    "Subscription",
    "UpdateOptions",
    "BackendError",
    "ConfigurationError",
    "ConnectionFailedError",
    "DataAccessError",
    "QueryValidationError",
    "SubscriptionError",
    "UnsupportedOperationError",
]
