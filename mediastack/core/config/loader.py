"""
Configuration loader — reads stack.yml into a StackConfig.

This is the primary entry point for loading stack configuration.
It reads YAML, validates against the Pydantic schema, and resolves
relative paths against the directory holding the config file, so the
setup run behaves the same from any working directory.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from mediastack.core.models.stack import StackConfig

logger = logging.getLogger(__name__)

# Default config filename
STACK_CONFIG_FILE = "stack.yml"

# Fields holding filesystem paths that may be written relative to stack.yml
_RELATIVE_PATH_FIELDS = ("config_dir", "output_dir", "env_path", "app_config_path")


class ConfigError(Exception):
    """Raised when stack configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for stack.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to stack.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / STACK_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _resolve_paths(data: dict, base: Path) -> None:
    for key in _RELATIVE_PATH_FIELDS:
        value = data.get(key)
        if isinstance(value, str) and value and not Path(value).is_absolute():
            data[key] = str((base / value).resolve())


def load_stack_config(path: Path | None = None) -> StackConfig:
    """Load and validate stack configuration.

    Args:
        path: Explicit path to stack.yml. If None, searches upward.

    Returns:
        Validated StackConfig with relative paths made absolute.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(f"No {STACK_CONFIG_FILE} found. Specify one with --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading stack config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "stack" key or be flat
    stack_data = data["stack"] if isinstance(data.get("stack"), dict) else data
    stack_data = dict(stack_data)
    _resolve_paths(stack_data, path.parent.resolve())

    try:
        config = StackConfig.model_validate(stack_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid stack configuration: {e}") from e

    logger.info("Loaded stack with %d components from %s", len(config.components), path)
    return config
