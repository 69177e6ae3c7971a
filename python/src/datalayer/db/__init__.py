"""
Data access abstraction layer.

Provides a unified interface for Supabase and standalone PostgreSQL backends.
Controlled by DB_PROVIDER environment variable (default: supabase).
"""

from .factory import create_provider
from .models import (
    ChangeEvent,
    CreateOptions,
    DeleteOptions,
    Eq,
    FindOptions,
    In,
    IsNull,
    MutationResult,
    OrderBy,
    PaginatedResult,
    QueryResult,
    SingleResult,
    Subscription,
    UpdateOptions,
)
from .protocol import DataProvider, RealtimeProvider

__all__ = [
    "create_provider",
    "DataProvider",
    "RealtimeProvider",
    "ChangeEvent",
    "CreateOptions",
    "DeleteOptions",
    "Eq",
    "FindOptions",
    "In",
    "IsNull",
    "MutationResult",
    "OrderBy",
    "PaginatedResult",
    "QueryResult",
    "SingleResult",
    "Subscription",
    "UpdateOptions",
]
