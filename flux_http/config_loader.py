"""Config Loader - Loads the client's default configuration from YAML.

Supports ${ENV_VAR} substitution in any string value so secrets (auth
tokens, API keys) can stay out of the file:

    base_url: https://api.example.com
    timeout_ms: 5000
    encoding: json
    headers:
      Authorization: Bearer ${API_TOKEN}
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from flux_http.models import ClientConfig, merge_headers

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_client_config(config_path: Path) -> ClientConfig:
    """Load a ClientConfig from YAML with ${ENV_VAR} substitution.

    Headers in the file are merged over the built-in defaults, so a file
    that only sets Authorization still sends the default User-Agent.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    headers = raw_config.get("headers")
    if headers is not None:
        if not isinstance(headers, dict):
            raise ConfigError("'headers' must be a mapping of header name to value")
        raw_config["headers"] = merge_headers(
            ClientConfig().headers, {str(k): str(v) for k, v in headers.items()}
        )

    try:
        return ClientConfig.model_validate(raw_config)
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
