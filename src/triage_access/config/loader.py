"""Access engine configuration loader."""

import os
import re
import types
import typing
from dataclasses import asdict, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from triage_access.errors import create_error

from .models import AccessConfig, StoreBackend, ValidationIssue, ValidationResult

CONFIG_PATH_ENV = "TRIAGE_ACCESS_CONFIG"

VALID_TOP_LEVEL_KEYS = {f.name for f in fields(AccessConfig)}


def resolve_env_vars(value: str) -> str:
    """Resolve environment variable references in string.

    Supports:
    - ${VAR} - Required, error if not set
    - ${VAR:-default} - With default value
    - ${VAR:?error message} - Required with custom error

    Args:
        value: String with potential env var references

    Returns:
        String with env vars resolved

    Raises:
        AccessError: If required var not set
    """
    pattern = r"\$\{([^}:]+)(?::([?-])([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        operator = match.group(2)  # '-' or '?' or None
        operand = match.group(3)  # default value or error message

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value

        if operator == "-":
            return operand or ""
        elif operator == "?":
            error_msg = operand or f"Required environment variable {var_name} not set"
            raise create_error("CONFIG_INVALID", detail=error_msg)
        else:
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Required environment variable {var_name} not set",
            )

    return re.sub(pattern, replacer, value)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve env vars in data structure."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    else:
        return data


class ConfigLoader:
    """Load and validate access engine configuration."""

    def __init__(self) -> None:
        """Initialize config loader."""
        self._config: AccessConfig | None = None
        self._config_path: Path | None = None

    def load(self, path: str | Path | None = None, use_defaults: bool = True) -> AccessConfig:
        """Load configuration from file.

        Resolution order if path not specified:
        1. TRIAGE_ACCESS_CONFIG environment variable
        2. ./triage-access.yaml
        3. ~/.triage-access/config.yaml
        4. If use_defaults=True and no file found, use default configuration

        Args:
            path: Optional path to config file
            use_defaults: If True, use default config when no file found

        Returns:
            Loaded AccessConfig instance

        Raises:
            AccessError: If file not found (when use_defaults=False) or invalid
        """
        if path is None:
            path = self._resolve_config_path()

        config_path = Path(path)

        if not config_path.exists():
            if use_defaults:
                return self.load_defaults()
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Configuration file not found: {config_path}",
            )

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Invalid YAML in config file: {e}",
            ) from e

        data = _resolve_env_vars_recursive(data)

        return self.load_from_dict(data, config_path)

    def load_defaults(self) -> AccessConfig:
        """Load default configuration without a file."""
        return self.load_from_dict({})

    def load_from_dict(
        self, data: dict[str, Any], config_path: Path | None = None
    ) -> AccessConfig:
        """Load configuration from dictionary.

        Values are deep-merged over the defaults, so a file that only sets
        ``quota.scans.free`` keeps every other ceiling.

        Args:
            data: Configuration dictionary
            config_path: Optional path to config file (for tracking)

        Returns:
            Loaded AccessConfig instance

        Raises:
            AccessError: If configuration is invalid
        """
        validation = self.validate(data)
        if not validation.valid:
            error_messages = [f"- {issue.path}: {issue.message}" for issue in validation.errors]
            raise create_error(
                "CONFIG_INVALID",
                detail="Configuration validation failed:\n" + "\n".join(error_messages),
            )

        known = {k: v for k, v in data.items() if k in VALID_TOP_LEVEL_KEYS}
        merged = deep_merge(asdict(AccessConfig()), known)

        try:
            config = self._convert_field(AccessConfig, merged)
        except (TypeError, ValueError) as e:
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Failed to parse configuration: {e}",
            ) from e

        self._config = config
        self._config_path = config_path
        return config

    def validate(self, data: dict[str, Any]) -> ValidationResult:
        """Validate config data without loading.

        Args:
            data: Configuration dictionary

        Returns:
            ValidationResult with errors and warnings
        """
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        for key in data:
            if key not in VALID_TOP_LEVEL_KEYS:
                warnings.append(
                    ValidationIssue(
                        path=key,
                        message=f"Unknown configuration key: {key}",
                        severity="warning",
                    )
                )

        for key in VALID_TOP_LEVEL_KEYS:
            if key in data and not isinstance(data[key], dict):
                errors.append(ValidationIssue(path=key, message=f"{key} must be a dictionary"))

        store = data.get("store")
        if isinstance(store, dict) and "backend" in store:
            allowed = {b.value for b in StoreBackend}
            if store["backend"] not in allowed:
                errors.append(
                    ValidationIssue(
                        path="store.backend",
                        message=f"backend must be one of {sorted(allowed)}",
                    )
                )

        quota = data.get("quota")
        if isinstance(quota, dict):
            for meter in ("scans", "tokens"):
                ceilings = quota.get(meter) or {}
                if not isinstance(ceilings, dict):
                    errors.append(
                        ValidationIssue(path=f"quota.{meter}", message="must be a dictionary")
                    )
                    continue
                for tier, ceiling in ceilings.items():
                    if ceiling is not None and (not isinstance(ceiling, int) or ceiling < 0):
                        errors.append(
                            ValidationIssue(
                                path=f"quota.{meter}.{tier}",
                                message="ceiling must be a non-negative integer or null",
                            )
                        )
            ttl = quota.get("idempotency_ttl_seconds")
            if ttl is not None and (not isinstance(ttl, int) or ttl <= 0):
                errors.append(
                    ValidationIssue(
                        path="quota.idempotency_ttl_seconds",
                        message="idempotency_ttl_seconds must be a positive integer",
                    )
                )

        rate_limits = data.get("rate_limits")
        if isinstance(rate_limits, dict):
            for name, category in (rate_limits.get("categories") or {}).items():
                if not isinstance(category, dict):
                    errors.append(
                        ValidationIssue(
                            path=f"rate_limits.categories.{name}",
                            message="must be a dictionary",
                        )
                    )
                    continue
                for key in ("max_per_window", "window_seconds"):
                    value = category.get(key)
                    if value is not None and (not isinstance(value, int) or value <= 0):
                        errors.append(
                            ValidationIssue(
                                path=f"rate_limits.categories.{name}.{key}",
                                message=f"{key} must be a positive integer",
                            )
                        )

        session = data.get("session")
        if isinstance(session, dict) and not session.get("secret"):
            warnings.append(
                ValidationIssue(
                    path="session.secret",
                    message="No session secret: session tokens will always be rejected",
                    severity="warning",
                )
            )

        return ValidationResult(valid=True, errors=errors, warnings=warnings)

    def get(self) -> AccessConfig:
        """Get current configuration.

        Raises:
            AccessError: If configuration not loaded
        """
        if self._config is None:
            raise create_error("CONFIG_INVALID", detail="Configuration not loaded")
        return self._config

    def _resolve_config_path(self) -> Path:
        """Resolve config file path using resolution order."""
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if env_path:
            return Path(env_path)

        local_path = Path("triage-access.yaml")
        if local_path.exists():
            return local_path

        home_path = Path.home() / ".triage-access" / "config.yaml"
        if home_path.exists():
            return home_path

        return local_path

    def _convert_field(self, field_type: Any, value: Any) -> Any:
        """Convert a plain value to the annotated type.

        Args:
            field_type: Expected field type
            value: Value to convert

        Returns:
            Converted value
        """
        if value is None:
            return None

        origin = typing.get_origin(field_type)

        # Optional[X] / X | None
        if origin in (typing.Union, types.UnionType):
            args = [a for a in typing.get_args(field_type) if a is not type(None)]
            return self._convert_field(args[0], value) if len(args) == 1 else value

        if origin is list:
            if not isinstance(value, list):
                return value
            args = typing.get_args(field_type)
            if args:
                return [self._convert_field(args[0], item) for item in value]
            return value

        if origin is dict:
            if not isinstance(value, dict):
                return value
            args = typing.get_args(field_type)
            if args and len(args) == 2:
                value_type = args[1]
                return {k: self._convert_field(value_type, v) for k, v in value.items()}
            return value

        if is_dataclass(field_type):
            if isinstance(value, dict):
                hints = typing.get_type_hints(field_type)
                kwargs = {}
                for f in fields(field_type):
                    if f.name in value:
                        kwargs[f.name] = self._convert_field(hints[f.name], value[f.name])
                return field_type(**kwargs)
            return value

        if isinstance(field_type, type) and issubclass(field_type, Enum):
            if isinstance(value, str):
                return field_type(value)
            return value

        return value


def load_config(path: str | Path | None = None) -> AccessConfig:
    """Convenience function to load config.

    Args:
        path: Optional path to config file

    Returns:
        Loaded AccessConfig instance
    """
    return ConfigLoader().load(path)
