"""
Client Manager Service

Optional process-wide DataClient for call sites that cannot be handed one
explicitly. Explicit construction (DataClient(provider)) stays the primary
path; this module only caches one instance built from Settings.

Ordering:
    init:     settings -> provider -> DataClient -> connect (get_data_client)
    teardown: close_data_client() disconnects (releasing realtime channels)
              before the cache is cleared
"""

from __future__ import annotations

from ..client import DataClient
from ..config.logfire_config import get_logger
from ..config.settings import Settings

logger = get_logger(__name__)

# Module-level cache, populated on first get_data_client()
_client: DataClient | None = None


async def get_data_client(settings: Settings | None = None) -> DataClient:
    """
    Return the cached DataClient, creating and connecting it on first call.
    Subsequent calls ignore settings and return the cached instance.

    Raises:
        ConfigurationError: on missing or invalid configuration.
        ConnectionFailedError: when the provider cannot connect.
    """
    global _client
    if _client is not None:
        return _client

    client = DataClient.from_settings(settings)
    await client.connect()
    _client = client
    logger.info("DataClient initialised")
    return _client


async def close_data_client() -> None:
    """Disconnect and drop the cached client. Safe to call when none exists."""
    global _client
    if _client is None:
        return
    client, _client = _client, None
    await client.disconnect()
    logger.info("DataClient closed")


def reset_data_client() -> None:
    """
    Drop the cached client without disconnecting it (used in tests to
    re-initialise with different settings). Not intended for production use.
    """
    global _client
    _client = None


__all__ = ["get_data_client", "close_data_client", "reset_data_client", "DataClient"]
