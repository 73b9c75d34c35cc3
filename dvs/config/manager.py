"""Load and save repository and local configuration files."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import tomli_w
import yaml

from dvs.config.constants import (
    CONFIG_FILENAMES,
    CONFIG_YAML,
    DVS_DIR,
    LOCAL_CONFIG_FILENAME,
)
from dvs.config.schema import (
    Config,
    LocalConfig,
    apply_deletions,
    deep_merge,
    parse_permissions,
    prune_empty,
    validate_model,
)
from dvs.core.metadata import MetadataFormat
from dvs.core.oid import HashAlgo
from dvs.errors import ConfigError, InvalidArg, NotInitialized
from dvs.utils.files import write_text_atomic
from dvs.utils.logger import get_logger

logger = get_logger("dvs.config")

CONFIG_KEYS = ("storage_dir", "permissions", "group", "hash_algo", "metadata_format")
LOCAL_CONFIG_KEYS = ("base_url", "auth.token", "cache.max_size")


def find_config_path(root: Path) -> Path | None:
    """Return the repository config file, preferring ``dvs.yaml``."""
    for name in CONFIG_FILENAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def _read_structured(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def _dump_structured(path: Path, data: dict[str, Any]) -> str:
    if path.suffix == ".toml":
        return tomli_w.dumps(data)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def load_config(root: Path) -> Config:
    """Load the repository config.

    Raises:
        NotInitialized: If neither ``dvs.yaml`` nor ``dvs.toml`` exists.
        ConfigError: If the file cannot be parsed or validated.
    """
    path = find_config_path(root)
    if path is None:
        raise NotInitialized()
    data = _read_structured(path)
    # Unquoted YAML numbers such as 664 are octal digits, not decimal modes
    if isinstance(data.get("permissions"), int):
        data["permissions"] = str(data["permissions"])
    return validate_model(Config, data, path.name)


def save_config(root: Path, config: Config, filename: str | None = None) -> Path:
    """Write the config, keeping the file name that already exists."""
    existing = find_config_path(root)
    path = root / (filename or (existing.name if existing else CONFIG_YAML))
    write_text_atomic(path, _dump_structured(path, config.to_file_dict()))
    logger.debug("Saved repository config", path=str(path))
    return path


def get_config_value(config: Config, key: str) -> str | None:
    """Read one setting by name.

    Raises:
        InvalidArg: For an unknown key.
    """
    if key not in CONFIG_KEYS:
        raise InvalidArg(
            f"Unknown config key '{key}' (expected one of: {', '.join(CONFIG_KEYS)})"
        )
    value = getattr(config, key)
    if value is None:
        return None
    if key == "permissions":
        return f"{value:o}"
    return str(value)


def set_config_value(config: Config, key: str, value: str | None) -> Config:
    """Return a copy of ``config`` with one setting changed.

    Raises:
        InvalidArg: For an unknown key or an invalid value.
    """
    if key not in CONFIG_KEYS:
        raise InvalidArg(
            f"Unknown config key '{key}' (expected one of: {', '.join(CONFIG_KEYS)})"
        )
    if key == "storage_dir" and not value:
        raise InvalidArg("storage_dir cannot be empty")
    parsed: Any = value
    if key == "permissions":
        parsed = parse_permissions(value)
    elif key == "hash_algo":
        parsed = HashAlgo.parse(value) if value else HashAlgo.BLAKE3
    elif key == "metadata_format":
        parsed = MetadataFormat.parse(value) if value else MetadataFormat.JSON
    elif key == "group":
        parsed = value or None
    return config.model_copy(update={key: parsed})


def local_config_path(root: Path) -> Path:
    return root / DVS_DIR / LOCAL_CONFIG_FILENAME


def load_local_config(root: Path) -> LocalConfig:
    """Load ``.dvs/config.toml``; a missing file yields defaults."""
    path = local_config_path(root)
    if not path.is_file():
        return LocalConfig()
    return validate_model(LocalConfig, _read_structured(path), str(path))


def save_local_config(root: Path, local: LocalConfig) -> Path:
    """Save local config; empty sections are omitted and an empty config
    removes the file."""
    path = local_config_path(root)
    data = local.to_file_dict()
    if not data:
        path.unlink(missing_ok=True)
        return path
    write_text_atomic(path, tomli_w.dumps(data))
    return path


def _nested_update(key: str, value: Any) -> dict[str, Any]:
    update: Any = value
    for part in reversed(key.split(".")):
        update = {part: update}
    return update


def get_local_value(local: LocalConfig, key: str) -> Any:
    if key not in LOCAL_CONFIG_KEYS:
        raise InvalidArg(
            f"Unknown local config key '{key}' "
            f"(expected one of: {', '.join(LOCAL_CONFIG_KEYS)})"
        )
    current: Any = local.to_file_dict()
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def set_local_value(local: LocalConfig, key: str, value: Any) -> LocalConfig:
    """Set or clear (``value=None``) one local setting.

    Clearing the last field of a section removes the section.
    """
    if key not in LOCAL_CONFIG_KEYS:
        raise InvalidArg(
            f"Unknown local config key '{key}' "
            f"(expected one of: {', '.join(LOCAL_CONFIG_KEYS)})"
        )
    update = _nested_update(key, value)
    data = local.to_file_dict()
    if value is None:
        data = apply_deletions(data, update)
    else:
        data = deep_merge(data, update)
    return validate_model(LocalConfig, prune_empty(data), LOCAL_CONFIG_FILENAME)
