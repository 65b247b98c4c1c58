"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

AUTH_KEY_ENV_VAR = "AI_VISION_GUARD_AUTH_KEY"

DEFAULT_AUTH_URL = "https://ngw.devices.sberbank.ru:9443/api/v2/oauth"
DEFAULT_BASE_URL = "https://gigachat.devices.sberbank.ru/api/v1"
DEFAULT_MAX_UPLOAD_BYTES = 15 * 1024 * 1024


class ApiScope(Enum):
    """Access scopes accepted by the credential-issuing endpoint."""
    PERSONAL = "GIGACHAT_API_PERS"
    BUSINESS = "GIGACHAT_API_B2B"
    CORPORATE = "GIGACHAT_API_CORP"


@dataclass(frozen=True)
class ApiConfig:
    """Endpoints and scope of the hosted model API."""
    auth_url: str = DEFAULT_AUTH_URL
    base_url: str = DEFAULT_BASE_URL
    scope: ApiScope = ApiScope.PERSONAL
    verify_ssl: bool = True

    def __post_init__(self):
        """Validate endpoint URLs."""
        for name in ("auth_url", "base_url"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL")


@dataclass(frozen=True)
class LimitsConfig:
    """Timeouts, retry ceiling and size limits."""
    request_timeout_seconds: float = 60.0
    token_refresh_margin_seconds: float = 60.0
    max_auth_retries: int = 3
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES

    def __post_init__(self):
        """Validate limit values."""
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.token_refresh_margin_seconds < 0:
            raise ValueError("token_refresh_margin_seconds must be >= 0")
        if self.max_auth_retries < 0:
            raise ValueError("max_auth_retries must be >= 0")
        if self.max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be > 0")


@dataclass(frozen=True)
class ModelsConfig:
    """Model identifiers used for text and image requests."""
    chat: str = "GigaChat-Max"
    vision: str = "GigaChat-Max"


@dataclass(frozen=True)
class StorageConfig:
    """Location of the deduplication database."""
    db_path: str = "ai_vision_guard.db"


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    api: ApiConfig = field(default_factory=ApiConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional; missing values fall back to defaults.
    Unknown keys are rejected so typos never silently change behavior.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'api', 'limits', 'models', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return AppConfig(
        api=_parse_api(_section(raw_config, 'api')),
        limits=_parse_limits(_section(raw_config, 'limits')),
        models=_parse_models(_section(raw_config, 'models')),
        storage=_parse_storage(_section(raw_config, 'storage')),
    )


def resolve_auth_key(explicit: Optional[str] = None) -> str:
    """Return the static authorization key.

    Args:
        explicit: Key passed directly; takes precedence over the environment

    Raises:
        ValueError: If no key is configured
    """
    key = explicit or os.environ.get(AUTH_KEY_ENV_VAR)
    if not key or not key.strip():
        raise ValueError(f"Authorization key is required. Set {AUTH_KEY_ENV_VAR} environment variable.")
    return key.strip()


def _section(raw_config: Dict, name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_api(data: Dict) -> ApiConfig:
    _check_keys(data, {'auth_url', 'base_url', 'scope', 'verify_ssl'}, "api")
    defaults = ApiConfig()

    scope = defaults.scope
    if 'scope' in data:
        scope_str = data['scope']
        if not isinstance(scope_str, str):
            raise ValueError("'scope' in api must be a string")
        try:
            scope = ApiScope(scope_str.upper())
        except ValueError:
            valid_scopes = [s.value for s in ApiScope]
            raise ValueError(f"'scope' in api must be one of: {valid_scopes}")

    verify_ssl = data.get('verify_ssl', defaults.verify_ssl)
    if not isinstance(verify_ssl, bool):
        raise ValueError("'verify_ssl' in api must be a boolean")

    return ApiConfig(
        auth_url=_string(data, 'auth_url', defaults.auth_url, "api"),
        base_url=_string(data, 'base_url', defaults.base_url, "api").rstrip("/"),
        scope=scope,
        verify_ssl=verify_ssl,
    )


def _parse_limits(data: Dict) -> LimitsConfig:
    _check_keys(
        data,
        {'request_timeout_seconds', 'token_refresh_margin_seconds', 'max_auth_retries', 'max_upload_bytes'},
        "limits",
    )
    defaults = LimitsConfig()
    return LimitsConfig(
        request_timeout_seconds=_number(data, 'request_timeout_seconds', defaults.request_timeout_seconds),
        token_refresh_margin_seconds=_number(
            data, 'token_refresh_margin_seconds', defaults.token_refresh_margin_seconds
        ),
        max_auth_retries=_integer(data, 'max_auth_retries', defaults.max_auth_retries),
        max_upload_bytes=_integer(data, 'max_upload_bytes', defaults.max_upload_bytes),
    )


def _parse_models(data: Dict) -> ModelsConfig:
    _check_keys(data, {'chat', 'vision'}, "models")
    defaults = ModelsConfig()
    return ModelsConfig(
        chat=_string(data, 'chat', defaults.chat, "models"),
        vision=_string(data, 'vision', defaults.vision, "models"),
    )


def _parse_storage(data: Dict) -> StorageConfig:
    _check_keys(data, {'db_path'}, "storage")
    return StorageConfig(db_path=_string(data, 'db_path', StorageConfig().db_path, "storage"))


def _string(data: Dict, key: str, default: str, path: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value.strip()


def _number(data: Dict, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in limits must be a number")
    return float(value)


def _integer(data: Dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in limits must be an integer")
    return value
