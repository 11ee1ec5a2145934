"""Core module - configuration, backend client and units."""

from rebanho.core import client, units
from rebanho.core.auth import AuthError, Session, session_from_settings, sign_in_with_password
from rebanho.core.client import (
    BackendError,
    RetryableError,
    commit,
    new_document_id,
    run_query,
)
from rebanho.core.config import ConfigurationError, get_cache_dir, require_backend_config, settings
from rebanho.core.units import (
    format_area,
    format_density,
    format_weight,
    is_imperial,
)

__all__ = [
    "client",
    "units",
    "settings",
    "get_cache_dir",
    "require_backend_config",
    "ConfigurationError",
    "run_query",
    "commit",
    "new_document_id",
    "BackendError",
    "RetryableError",
    "AuthError",
    "Session",
    "sign_in_with_password",
    "session_from_settings",
    # Unit conversion helpers
    "format_weight",
    "format_area",
    "format_density",
    "is_imperial",
]
