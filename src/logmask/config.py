"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
An optional config.yaml provides defaults; environment variables win.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

CONFIG_FILE_ENV = "LOGMASK_CONFIG_FILE"

_SECTION_PREFIXES = {
    "masking": "LOGMASK_MASKING_",
    "recovery": "LOGMASK_RECOVERY_",
    "audit": "LOGMASK_AUDIT_",
}


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get(CONFIG_FILE_ENV)

    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/logmask
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


def _parse_json_mapping(v: Any) -> Any:
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError:
            raise ValueError("expected a JSON object") from None
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
        return parsed
    return v


class MaskingSettings(BaseSettings):
    """Masking rule configuration."""

    use_default_patterns: bool = Field(default=False, description="Enable the built-in PII patterns")
    patterns: Dict[str, str] = Field(default_factory=dict, description="Regex pattern to replacement")
    field_rules: Dict[str, Any] = Field(
        default_factory=dict,
        description="Dotted path to field action ({'type': 'remove'|'replace'|'mask_regex'})",
    )
    type_rules: Dict[str, str] = Field(default_factory=dict, description="Value type to replacement")
    max_depth: int = Field(default=100, description="Maximum traversal depth (1-300)")
    mask_json_in_message: bool = Field(default=True, description="Mask JSON embedded in messages")

    @field_validator("patterns", "field_rules", "type_rules", mode="before")
    def parse_mappings(cls, v: Any) -> Any:
        """Parse mappings from JSON strings if needed."""
        return _parse_json_mapping(v)

    class Config:
        env_prefix = "LOGMASK_MASKING_"


class RecoverySettings(BaseSettings):
    """Retry and fallback configuration."""

    max_attempts: int = Field(default=3, description="Attempts per masking operation")
    base_delay_ms: float = Field(default=10.0, description="Backoff base delay in milliseconds")
    max_delay_ms: float = Field(default=100.0, description="Backoff delay cap in milliseconds")
    failure_mode: str = Field(default="fail_safe", description="fail_open, fail_closed or fail_safe")
    fallback_mask: Optional[str] = Field(default=None, description="Fixed fallback value overriding the mode")

    @field_validator("failure_mode")
    def validate_failure_mode(cls, v: str) -> str:
        normalized = v.strip().lower()
        if normalized not in ("fail_open", "fail_closed", "fail_safe"):
            raise ValueError("failure_mode must be fail_open, fail_closed or fail_safe")
        return normalized

    class Config:
        env_prefix = "LOGMASK_RECOVERY_"


class AuditSettings(BaseSettings):
    """Audit trail configuration."""

    enabled: bool = Field(default=False, description="Emit audit records through structlog")
    profile: str = Field(default="default", description="strict, default, relaxed or testing")
    category_limits: Dict[str, int] = Field(default_factory=dict, description="Per-category limit overrides")
    window_seconds: Optional[int] = Field(default=None, description="Overrides the profile window")

    @field_validator("category_limits", mode="before")
    def parse_category_limits(cls, v: Any) -> Any:
        return _parse_json_mapping(v)

    @field_validator("profile")
    def validate_profile(cls, v: str) -> str:
        if v not in ("strict", "default", "relaxed", "testing"):
            raise ValueError("profile must be strict, default, relaxed or testing")
        return v

    class Config:
        env_prefix = "LOGMASK_AUDIT_"


class Settings(BaseSettings):
    """Main settings."""

    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    # Component settings
    masking: MaskingSettings = Field(default_factory=MaskingSettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    class Config:
        env_prefix = "LOGMASK_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _env_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("logging", "level"): "LOGMASK_LOG_LEVEL",
        ("logging", "json"): "LOGMASK_JSON_LOGS",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = _env_value(value)

    for section, prefix in _SECTION_PREFIXES.items():
        for key, value in (config_data.get(section) or {}).items():
            env_var = f"{prefix}{key.upper()}"
            if env_var not in os.environ and value is not None:
                os.environ[env_var] = _env_value(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
