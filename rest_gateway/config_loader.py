"""Config Loader - loads the gateway config file.

The config is YAML with ${ENV_VAR} substitution in string values:

    services:
      users:
        service_name: users-api
        timeout: 5
        endpoints:
          endpoint: https://users.internal/v1
          slow:
            path: https://users-batch.internal/v1
            transport_config:
              timeout: 60
        proxy_headers: [x-tenant-id]
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rest_gateway.models import GatewayConfig

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_gateway_config(config_path: Path) -> GatewayConfig:
    """Load the gateway config from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    return parse_gateway_config(raw_config)


def parse_gateway_config(raw_config: Any) -> GatewayConfig:
    """Validate an already-parsed config mapping."""
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return GatewayConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
