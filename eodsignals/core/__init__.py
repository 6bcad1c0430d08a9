"""Core infrastructure: settings, logging, exceptions, numeric helpers."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AppException,
    ConfigurationError,
    ExternalServiceError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from .locks import KeyedLock
from .logging import get_logger, run_id_var, setup_logging


__all__ = [
    "AppException",
    "ConfigurationError",
    "ExternalServiceError",
    "KeyedLock",
    "NotFoundError",
    "Settings",
    "UpstreamUnavailableError",
    "ValidationError",
    "get_logger",
    "get_settings",
    "run_id_var",
    "settings",
    "setup_logging",
]
