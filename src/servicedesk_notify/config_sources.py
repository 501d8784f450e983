"""YAML configuration files as a pydantic-settings source.

Lives apart from config_loader.py so config_models.py can import it without a
cycle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import yaml
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

if TYPE_CHECKING:
    import pathlib

    from pydantic.fields import FieldInfo

logger = logging.getLogger(__name__)


def deep_merge_dicts(
    base_dict: dict[str, Any],
    merge_dict: dict[str, Any],
) -> dict[str, Any]:
    """Return a new dict with ``merge_dict`` layered over ``base_dict``.

    Nested mappings are merged key by key; any other value in ``merge_dict``
    replaces the base value outright. Neither argument is modified.
    """
    merged = dict(base_dict)
    for key, value in merge_dict.items():
        base_value = merged.get(key)
        if isinstance(value, dict) and isinstance(base_value, dict):
            merged[key] = deep_merge_dicts(base_value, value)
        elif isinstance(value, dict):
            merged[key] = deep_merge_dicts({}, value)
        else:
            merged[key] = value
    return merged


def load_yaml_file(
    file_path: str | pathlib.Path,
) -> dict[str, Any]:
    """Read one configuration file.

    A missing or empty file contributes nothing.

    Raises:
        ValueError: If the file is not valid YAML or its top level is not a mapping.
    """
    try:
        with open(file_path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        logger.info(f"{file_path} not found, skipping")
        return {}
    except yaml.YAMLError as e:
        raise ValueError(f"Cannot parse {file_path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(
            f"{file_path} must contain a mapping at the top level, got {type(content).__name__}"
        )
    return content


class DeepMergedYamlSource(PydanticBaseSettingsSource):
    """Settings source built from several YAML files, later files winning."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_files: list[str]) -> None:
        super().__init__(settings_cls)
        self.yaml_files = yaml_files

    def get_field_value(
        self,
        field: FieldInfo,
        field_name: str,
    ) -> tuple[Any, str, bool]:
        # Unused: __call__ returns every value at once
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in self.yaml_files:
            merged = deep_merge_dicts(merged, load_yaml_file(path))
        return merged
