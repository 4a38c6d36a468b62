"""YAML configuration loading.

Used by [Pool.from_yaml()][chainsync.core.pool.Pool.from_yaml],
[Store.from_yaml()][chainsync.core.store.Store.from_yaml], and
[BaseService.from_yaml()][chainsync.core.base_service.BaseService.from_yaml].

Examples:
    ```python
    from chainsync.core.yaml import load_yaml

    config = load_yaml("config/services/block_sync.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str) -> dict[str, Any]:
    """Load and parse a YAML configuration file with ``yaml.safe_load``.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration as a nested dictionary. An empty file yields
        an empty dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.

    Warning:
        The structure is not validated here. Pass the result to the
        matching Pydantic model.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
