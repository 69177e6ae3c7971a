"""
Data Provider Factory

Builds the DataProvider implementation selected by Settings.provider.

DB_PROVIDER=supabase (default): SupabaseProvider (requires SUPABASE_URL + SUPABASE_SERVICE_KEY)
DB_PROVIDER=postgres:           PostgresProvider (requires POSTGRES_DSN)
"""

from __future__ import annotations

import re

from ..config.logfire_config import get_logger
from ..config.settings import Settings
from ..errors import ConfigurationError
from .protocol import DataProvider

logger = get_logger(__name__)


def create_provider(settings: Settings | None = None) -> DataProvider:
    """
    Construct (but do not connect) the provider described by settings.

    Raises:
        ConfigurationError: on missing or invalid configuration.
    """
    settings = settings or Settings.from_env()

    if settings.provider == "supabase":
        provider = _build_supabase_provider(settings)
    elif settings.provider == "postgres":
        provider = _build_postgres_provider(settings)
    else:
        raise ConfigurationError(f"DB_PROVIDER='{settings.provider}' is not supported.")

    logger.info("DataProvider created (provider=%s)", settings.provider)
    return provider


def _build_supabase_provider(settings: Settings) -> DataProvider:
    from .supabase_adapter import SupabaseProvider

    if settings.supabase is None:
        raise ConfigurationError(
            "DB_PROVIDER=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY "
            "to be set in environment variables."
        )
    url = settings.supabase.url
    match = re.match(r"https://([^.]+)\.supabase\.co", url)
    if match:
        logger.debug("Supabase provider configured (project=%s)", match.group(1))
    else:
        logger.debug("Supabase provider configured (self-hosted)")

    return SupabaseProvider(
        url,
        settings.supabase.service_key,
        default_page_size=settings.default_page_size,
        raw_rpc_function=settings.raw_rpc_function,
        subscribe_timeout=settings.subscribe_timeout,
    )


def _build_postgres_provider(settings: Settings) -> DataProvider:
    from .postgres_adapter import PostgresProvider

    if settings.postgres is None:
        raise ConfigurationError("DB_PROVIDER=postgres requires POSTGRES_DSN to be set.")
    return PostgresProvider(
        settings.postgres.dsn,
        min_conn=settings.postgres.pool_min,
        max_conn=settings.postgres.pool_max,
        default_page_size=settings.default_page_size,
    )
