"""Configuration loader and settings helpers for A22_Ingestor."""

import base64
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


class AWSSettings(BaseModel):
    """AWS-specific configuration options derived from global settings."""

    model_config = ConfigDict(extra="forbid")

    region: str | None = None


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class SecretsManagerSettings(BaseModel):
    """AWS Secrets Manager integration settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    secret_name: str | None = None
    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    overwrite_env: bool = False
    required_env: list[str] = Field(default_factory=list)


class WebserviceSettings(BaseModel):
    """Connection details and protocol constants for the A22 web service."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    username: str | None = None
    password: str | None = None
    connect_timeout: float = Field(default=30.0, gt=0)
    read_timeout: float = Field(default=1800.0, gt=0)
    user_agent: str = "NOI/traffic_a22"
    station_prefix: str = "A22"

    token_path: str = "/token"
    catalog_path: str = "/traffico/anagrafica"
    codes_path: str = "/traffico/nazioni"
    events_path: str = "/traffico/transiti"

    token_result_key: str = "SubscribeResult"
    release_result_key: str = "RemoveSubscribeResult"
    catalog_result_key: str = "Traffico_GetAnagraficaResult"
    codes_result_key: str = "Traffico_GetNazioniResult"
    events_result_key: str = "Traffico_GetTransitiResult"

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return value.rstrip("/")

    def has_credentials(self) -> bool:
        """Return True when url, username and password are all configured."""

        return bool(self.url and self.username and self.password)


class SyncSettings(BaseModel):
    """Tuning knobs for the bulk loader and the incremental follower."""

    model_config = ConfigDict(extra="forbid")

    worker_count: int = Field(default=8, ge=1)
    window_seconds: int = Field(default=1000, ge=1)
    max_auth_attempts: int = Field(default=10, ge=1)
    auth_backoff_seconds: float = Field(default=0.025, ge=0)
    inter_group_delay_seconds: float = Field(default=0.025, ge=0)
    follow_interval_seconds: float = Field(default=30.0, ge=0)
    lookback_days: int = Field(default=7, ge=1)
    metrics_port: int | None = Field(default=None, ge=1, le=65535)


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and environment overrides."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    secrets_manager: SecretsManagerSettings = Field(default_factory=SecretsManagerSettings)

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="A22_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    config_dir: Path = Path("config")
    aws: AWSSettings = AWSSettings()
    secrets_manager: SecretsManagerSettings = SecretsManagerSettings()
    webservice: WebserviceSettings = WebserviceSettings()
    sync: SyncSettings = SyncSettings()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("config_dir", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()


def _deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries without mutating the inputs."""

    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


@lru_cache(maxsize=8)
def _load_service_configuration_cached(config_dir: str, profile: str) -> ServiceConfiguration:
    """Load and cache the service configuration for a given profile."""

    directory = Path(config_dir)
    base_path = directory / "settings.base.yaml"
    if not base_path.exists():
        raise ConfigurationError(
            f"Missing base configuration template at '{base_path}'. "
            "Create this file to define shared defaults."
        )

    base_config = load_yaml_config(base_path)

    profile_path = directory / f"settings.{profile}.yaml"
    profile_config: dict[str, Any] = {}
    if profile_path.exists():
        profile_config = load_yaml_config(profile_path)
    else:
        logger.debug("No configuration override found for profile '%s'", profile)

    merged = _deep_merge_dicts(base_config, profile_config)
    merged.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(merged)
    except PydanticValidationError as exc:  # pragma: no cover - validation details bubbled up
        raise ConfigurationError(
            "Invalid configuration template for profile "
            f"'{profile}': {exc}"
        ) from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the merged service configuration for the active profile."""

    if settings is None:
        settings = get_settings()

    profile = settings.config_profile or settings.environment

    if reload:
        _load_service_configuration_cached.cache_clear()

    return _load_service_configuration_cached(str(settings.config_dir), profile.lower())


def _fetch_secrets_from_manager(
    *,
    secret_name: str,
    region: str | None,
    profile: str | None,
    endpoint_url: str | None,
) -> dict[str, str]:
    """Retrieve secrets from AWS Secrets Manager."""

    session_kwargs: dict[str, Any] = {}
    if region:
        session_kwargs["region_name"] = region
    if profile:
        session_kwargs["profile_name"] = profile

    session = Session(**session_kwargs)
    client = session.client("secretsmanager", endpoint_url=endpoint_url)

    try:
        response = client.get_secret_value(SecretId=secret_name)
    except (BotoCoreError, ClientError) as exc:  # pragma: no cover - dependency errors
        raise ConfigurationError(
            f"Unable to retrieve secret '{secret_name}' from AWS Secrets Manager: {exc}"
        ) from exc

    secret_string = response.get("SecretString")
    if secret_string is None:
        secret_binary = response.get("SecretBinary")
        if secret_binary is None:
            return {}
        secret_string = base64.b64decode(secret_binary).decode("utf-8")

    try:
        payload = json.loads(secret_string)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            "Secrets Manager payload must be valid JSON mapping of environment variables"
        ) from exc

    if not isinstance(payload, dict):
        raise ConfigurationError(
            "Secrets Manager payload must be a JSON object of key/value pairs"
        )

    return {str(key): str(value) for key, value in payload.items() if value is not None}


def _inject_secrets_into_environment(secrets: dict[str, str], *, overwrite: bool) -> None:
    """Inject secrets into os.environ respecting overwrite flag."""

    for key, value in secrets.items():
        env_key = key.upper()
        if not env_key.startswith("A22_"):
            logger.debug("Ignoring secret '%s' because it does not use A22_ prefix", env_key)
            continue
        if not overwrite and env_key in os.environ:
            continue
        os.environ[env_key] = value


def load_runtime_secrets(
    settings: GlobalSettings,
    service_config: ServiceConfiguration,
) -> dict[str, str]:
    """Load secrets defined in configuration or environment and inject them."""

    secrets_cfg = settings.secrets_manager
    config_cfg = service_config.secrets_manager

    if not (secrets_cfg.enabled or config_cfg.enabled):
        return {}

    secret_name = secrets_cfg.secret_name or config_cfg.secret_name
    if not secret_name:
        raise ConfigurationError(
            "Secrets Manager integration enabled but no secret_name configured"
        )

    secrets = _fetch_secrets_from_manager(
        secret_name=secret_name,
        region=secrets_cfg.region or config_cfg.region or settings.aws.region,
        profile=secrets_cfg.profile or config_cfg.profile,
        endpoint_url=secrets_cfg.endpoint_url or config_cfg.endpoint_url,
    )

    _inject_secrets_into_environment(
        secrets,
        overwrite=secrets_cfg.overwrite_env or config_cfg.overwrite_env,
    )
    return secrets


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Validate configuration templates, load secrets, and ensure required env vars."""

    settings = settings or get_settings()

    service_config = get_service_configuration(settings=settings, reload=True)

    secrets = load_runtime_secrets(settings, service_config)
    if secrets:
        logger.info("Loaded %d secrets from AWS Secrets Manager", len(secrets))
        settings = get_settings(reload=True)

    required_env: set[str] = set(service_config.required_env)
    required_env.update(service_config.secrets_manager.required_env)
    required_env.add("A22_DATABASE_URL")

    missing = sorted(var for var in required_env if not os.environ.get(var))

    if missing:
        joined = ", ".join(missing)
        raise ConfigurationError(
            "Missing required environment variables: "
            f"{joined}. Configure them via configuration templates, Secrets Manager, or .env files."
        )

    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()
