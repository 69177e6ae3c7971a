from .logfire_config import get_logger, safe_span, setup_logfire
from .settings import PostgresSettings, Settings, SupabaseSettings

__all__ = [
    "Settings",
    "SupabaseSettings",
    "PostgresSettings",
    "get_logger",
    "safe_span",
    "setup_logfire",
]
