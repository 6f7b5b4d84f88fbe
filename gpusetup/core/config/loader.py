"""
Configuration loader — reads gpusetup.yml into a SetupConfig.

The file is optional: without one, the built-in defaults (CUDA 11.8,
cuDNN 8.9.4.25, TensorFlow C API 2.14.0, PixInsight in /opt) apply.
A file only needs the keys it overrides; component sections are merged
over the defaults field by field.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from gpusetup.core.errors import ConfigError
from gpusetup.core.models.component import SetupConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "gpusetup.yml"

# Environment variable pointing at an explicit config file
CONFIG_ENV_VAR = "GPUSETUP_CONFIG"

_COMPONENT_KEYS = ("cuda", "cudnn", "tensorflow", "app", "timeouts")


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Locate a config file.

    Search order: ``$GPUSETUP_CONFIG``, ``<start_dir>/gpusetup.yml``,
    ``~/.config/gpusetup/gpusetup.yml``.

    Returns:
        Path to the config file, or None if there is none.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()

    candidate = (start_dir or Path.cwd()) / CONFIG_FILE
    if candidate.is_file():
        return candidate

    user_candidate = Path("~/.config/gpusetup").expanduser() / CONFIG_FILE
    if user_candidate.is_file():
        return user_candidate

    return None


def load_config(path: Path | None = None) -> SetupConfig:
    """Load and validate the setup configuration.

    Args:
        path: Explicit config path. If None, ``find_config_file()`` is used
            and defaults apply when nothing is found.

    Returns:
        Validated SetupConfig.

    Raises:
        ConfigError: If the file is missing (when explicit) or invalid.
    """
    explicit = path is not None
    if path is None:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found, using built-in defaults", CONFIG_FILE)
        return SetupConfig()

    if not path.is_file():
        if explicit or os.environ.get(CONFIG_ENV_VAR):
            raise ConfigError(f"Config file not found: {path}")
        return SetupConfig()

    logger.debug("Loading config from %s", path)

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

    merged = _merge_defaults(data)
    try:
        config = SetupConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded configuration from %s", path)
    return config


def _merge_defaults(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay partial component sections on the default descriptors."""
    defaults = SetupConfig().model_dump()
    merged = dict(data)
    for key in _COMPONENT_KEYS:
        section = data.get(key)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigError(f"Section '{key}' must be a mapping")
        merged[key] = {**defaults[key], **section}
    return merged
