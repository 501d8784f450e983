"""Builds the AppConfig from defaults, YAML files and the environment.

Configuration is loaded in the following priority order (lowest to highest):
1. Pydantic model defaults (defined in config_models.py)
2. defaults.yaml, then config.yaml
3. Environment variables (including values loaded from .env)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from .config_models import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_DEFAULTS_FILE = "defaults.yaml"
DEFAULT_CONFIG_FILE = "config.yaml"


@dataclass
class EnvVarMapping:
    """Defines how an environment variable maps to a config path.

    Attributes:
        env_var: Environment variable name
        config_path: Dot-separated path in config dict (e.g., "push.access_token")
        value_type: Type to convert the value to (str, int, float, bool, list)
        list_separator: Separator for list values (default ",")
    """

    env_var: str
    config_path: str
    value_type: type = str
    list_separator: str = ","


ENV_VAR_MAPPINGS: list[EnvVarMapping] = [
    # Firebase
    EnvVarMapping("FIREBASE_SERVICE_ACCOUNT_PATH", "firebase.credentials_path"),
    EnvVarMapping("FIREBASE_SERVICE_ACCOUNT_JSON", "firebase.credentials_json"),
    EnvVarMapping("FIREBASE_PROJECT_ID", "firebase.project_id"),
    EnvVarMapping("FUNCTIONS_REGION", "firebase.region"),
    # Store layout
    EnvVarMapping("USERS_COLLECTION", "store.users_collection"),
    EnvVarMapping("AUTH_ID_FIELD", "store.auth_id_field"),
    EnvVarMapping("FIRESTORE_IN_QUERY_LIMIT", "store.in_query_limit", int),
    # Push gateway
    EnvVarMapping("EXPO_PUSH_BASE_URL", "push.base_url"),
    EnvVarMapping("EXPO_ACCESS_TOKEN", "push.access_token"),
    EnvVarMapping("PUSH_SEND_CHUNK_SIZE", "push.send_chunk_size", int),
    EnvVarMapping("PUSH_RECEIPT_CHUNK_SIZE", "push.receipt_chunk_size", int),
    EnvVarMapping("PUSH_MAX_ATTEMPTS", "push.max_attempts", int),
    EnvVarMapping("PUSH_BASE_DELAY_SECONDS", "push.base_delay_seconds", float),
    EnvVarMapping("PUSH_RECEIPT_DELAY_SECONDS", "push.receipt_delay_seconds", float),
    # Templates
    EnvVarMapping("AUTO_ACCEPT_COMMENTS", "templates.auto_accept_comments", list, "|"),
]


def set_nested_value(
    data: dict[str, Any],
    path: str,
    value: Any,  # noqa: ANN401
) -> None:
    """Set a value at a nested path in a dictionary.

    Args:
        data: The dictionary to modify
        path: Dot-separated path (e.g., "push.access_token")
        value: The value to set
    """
    keys = path.split(".")
    current = data
    for key in keys[:-1]:
        if key not in current:
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def parse_env_value(
    value: str,
    value_type: type,
    list_separator: str = ",",
) -> Any:  # noqa: ANN401
    """Parse an environment variable value to the specified type.

    Raises:
        ValueError: If the value cannot be converted to the target type
    """
    if value_type is str:
        return value

    if value_type is int:
        return int(value)

    if value_type is float:
        return float(value)

    if value_type is bool:
        return value.lower() in {"true", "1", "yes"}

    if value_type is list:
        return [item.strip() for item in value.split(list_separator) if item.strip()]

    return value


def apply_env_var_overrides(
    config_data: dict[str, Any],
    mappings: list[EnvVarMapping] | None = None,
) -> None:
    """Apply environment variable overrides to configuration.

    Args:
        config_data: The configuration dictionary to modify in place
        mappings: List of env var mappings to apply (defaults to ENV_VAR_MAPPINGS)
    """
    if mappings is None:
        mappings = ENV_VAR_MAPPINGS

    for mapping in mappings:
        env_value = os.getenv(mapping.env_var)
        if env_value is not None:
            try:
                parsed_value = parse_env_value(
                    env_value, mapping.value_type, mapping.list_separator
                )
                set_nested_value(config_data, mapping.config_path, parsed_value)
                logger.debug(
                    f"Applied env var {mapping.env_var} to {mapping.config_path}"
                )
            except ValueError as e:
                logger.error(
                    f"Invalid value for {mapping.env_var}: {e}. Using previous value."
                )


def load_config(
    defaults_file_path: str = DEFAULT_DEFAULTS_FILE,
    config_file_path: str = DEFAULT_CONFIG_FILE,
    load_dotenv_file: bool = True,
) -> AppConfig:
    """Load and validate the configuration for this process.

    Args:
        defaults_file_path: Path to the defaults YAML file (shipped with app)
        config_file_path: Path to the operator config YAML file (optional)
        load_dotenv_file: Whether to load .env file (default True)

    Returns:
        A validated AppConfig model containing all configuration

    Raises:
        ValidationError: If configuration contains invalid keys or values
        ValueError: If a YAML file cannot be parsed
    """
    yaml_files = [
        p for p in [defaults_file_path, config_file_path] if os.path.exists(p)
    ]
    with AppConfig.yaml_source_context(yaml_files):
        base_config = AppConfig()
    logger.info("Built config from field defaults + YAML files: %s", yaml_files)

    config_data = base_config.model_dump()

    if load_dotenv_file:
        load_dotenv()

    apply_env_var_overrides(config_data)

    try:
        validated_config = AppConfig.model_validate(config_data)
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    logger.info(
        f"Final configuration (excluding secrets): {json.dumps(validated_config.loggable_dict(), indent=2, ensure_ascii=False)}"
    )
    return validated_config
