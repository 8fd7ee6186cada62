"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    ServiceConfiguration,
    SyncSettings,
    WebserviceSettings,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    load_runtime_secrets,
    load_yaml_config,
)
from .logging import log_sync_window, setup_logger

__all__ = [
    "GlobalSettings",
    "ServiceConfiguration",
    "SyncSettings",
    "WebserviceSettings",
    "ensure_runtime_configuration",
    "get_settings",
    "get_service_configuration",
    "load_runtime_secrets",
    "load_yaml_config",
    "log_sync_window",
    "setup_logger",
]
