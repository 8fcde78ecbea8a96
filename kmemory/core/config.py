"""
Configuration system for kmemory.

Uses Pydantic v2 for validation and immutable config objects.

Configuration Hierarchy (highest priority first):
1. CLI arguments (passed to load_config)
2. Environment variables (KMEMORY_*, plus MEMORY_FILE_PATH)
3. YAML configuration file
4. Pydantic field defaults
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from kmemory.core.search import DEFAULT_SEARCH_LIMIT
from kmemory.core.storage import resolve_memory_path
from kmemory.matching.duplicates import DuplicateOptions

MEMORY_FILE_ENV = "MEMORY_FILE_PATH"

# Path settings that a YAML file may give relative to its own directory
_RELATIVE_PATH_KEYS = ("memory_file_path", "log_db_path")

# Sections whose env keys nest: KMEMORY_DUPLICATES_PRESET -> duplicates.preset
_SECTIONS = {"duplicates"}


class MemoryConfig(BaseModel):
    """Central configuration object for a memory store."""

    model_config = ConfigDict(frozen=True)

    memory_file_path: Path = Field(
        default_factory=resolve_memory_path,
        description="Backing record file",
    )
    search_limit: int = Field(
        default=DEFAULT_SEARCH_LIMIT, gt=0, description="Max hits per search index"
    )
    validate_relations: bool = Field(
        default=False, description="Reject relations whose endpoints are missing"
    )
    log_db_path: Optional[Path] = Field(
        default=None, description="SQLite operation journal (disabled when unset)"
    )
    duplicates: DuplicateOptions = Field(default_factory=DuplicateOptions)

    @field_validator("memory_file_path", mode="before")
    @classmethod
    def resolve_memory_file(cls, v: Any) -> Path:
        return resolve_memory_path(str(v) if v else None)

    @classmethod
    def from_yaml(cls, path: Path) -> "MemoryConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data, base_path=Path(path).parent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Optional[Path] = None) -> "MemoryConfig":
        """Create from dictionary; relative file paths resolve against base_path."""
        return cls.model_validate(_resolve_relative_paths(data, base_path))


def load_config(
    path: Optional[Path] = None,
    env_prefix: str = "KMEMORY_",
    cli_overrides: Optional[Dict[str, Any]] = None,
    use_env: bool = True,
) -> MemoryConfig:
    """Load configuration with hierarchy: defaults → YAML → env vars → CLI args.

    Args:
        path: Optional explicit path to YAML config file
        env_prefix: Prefix for environment variables (default: "KMEMORY_")
        cli_overrides: Optional dictionary of CLI argument overrides
        use_env: Whether to load environment variables (default: True)

    Returns:
        Merged MemoryConfig

    Examples:
        # MEMORY_FILE_PATH=/data/memory.json
        config = load_config()

        # KMEMORY_DUPLICATES_PRESET=loose
        config = load_config()  # config.duplicates.preset == "loose"
    """
    yaml_path = _find_config_file(path)

    if yaml_path:
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
        config_dict = _resolve_relative_paths(config_dict, yaml_path.parent)
    else:
        config_dict = {}

    if use_env:
        _deep_merge(config_dict, _extract_env_config(env_prefix))

    if cli_overrides:
        _deep_merge(config_dict, {k: v for k, v in cli_overrides.items() if v is not None})

    return MemoryConfig.model_validate(config_dict)


def _resolve_relative_paths(data: Dict[str, Any], base_path: Optional[Path]) -> Dict[str, Any]:
    """Anchor relative file paths in data to base_path."""
    data = dict(data)
    if base_path is None:
        return data
    for key in _RELATIVE_PATH_KEYS:
        value = data.get(key)
        if value and not Path(value).is_absolute():
            data[key] = Path(base_path).absolute() / value
    return data


def _find_config_file(path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file.

    Searches in this order:
    1. Provided path
    2. ./kmemory.yaml
    """
    if path and Path(path).exists():
        return Path(path)

    config_path = Path("kmemory.yaml")
    if config_path.exists():
        return config_path

    return None


def _extract_env_config(prefix: str = "KMEMORY_") -> Dict[str, Any]:
    """Extract configuration from environment variables.

    - MEMORY_FILE_PATH=/tmp/m.json → {"memory_file_path": "/tmp/m.json"}
    - KMEMORY_SEARCH_LIMIT=50 → {"search_limit": 50}
    - KMEMORY_DUPLICATES_PRESET=loose → {"duplicates": {"preset": "loose"}}
    """
    config: Dict[str, Any] = {}

    memory_file = os.environ.get(MEMORY_FILE_ENV)
    if memory_file:
        config["memory_file_path"] = memory_file

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix):].lower()
        if not config_key:
            continue

        converted_value = _convert_env_value(value)
        parts = config_key.split("_")

        if parts[0] in _SECTIONS and len(parts) > 1:
            section = parts[0]
            config.setdefault(section, {})["_".join(parts[1:])] = converted_value
        else:
            config[config_key] = converted_value

    return config


def _convert_env_value(value: str) -> Union[str, int, float, bool, List[str]]:
    """Convert environment variable string to appropriate type."""
    if not value:
        return value

    if value.lower() in ("true", "yes", "1", "on"):
        return True
    if value.lower() in ("false", "no", "0", "off"):
        return False

    if "," in value:
        return [v.strip() for v in value.split(",") if v.strip()]

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base dictionary (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
