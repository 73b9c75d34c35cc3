from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from dvs import __version__
from dvs.core.metadata import MetadataFormat
from dvs.core.oid import HashAlgo
from dvs.errors import ConfigError, InvalidArg


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge updates into base without mutating inputs.

    - Keys present in updates with non-None values are merged/overwritten
    - Keys present in updates with None values are skipped (preserve base value)
    - Keys not present in updates are preserved from base
    """
    result = deepcopy(base)
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        elif key in result and value is None:
            continue
        else:
            result[key] = value
    return result


def apply_deletions(config: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Apply explicit null deletions from updates to config.

    Recursively removes keys from config where updates has explicit None
    values, e.g. ``{"auth": {"token": None}}`` clears the stored token.
    """
    result = deepcopy(config)
    for key, value in updates.items():
        if value is None:
            result.pop(key, None)
        elif (
            isinstance(value, dict) and key in result and isinstance(result[key], dict)
        ):
            result[key] = apply_deletions(result[key], value)
    return result


def prune_empty(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values and sections left with no keys."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = prune_empty(value)
            if not value:
                continue
        elif value is None:
            continue
        result[key] = value
    return result


def parse_permissions(value: Any) -> int | None:
    """Parse an octal permission spec such as ``"664"`` or ``"0o664"``.

    Integers are taken as an already-decoded mode.

    Raises:
        InvalidArg: If the value is not octal or exceeds 0o777.
    """
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0 or value > 0o777:
            raise InvalidArg(f"Invalid permission mode {value:o}: must be <= 777")
        return value
    text = str(value).strip().lower()
    if text.startswith("0o"):
        text = text[2:]
    try:
        mode = int(text, 8)
    except ValueError as e:
        raise InvalidArg(f"Invalid permission octal '{value}'") from e
    if mode < 0 or mode > 0o777:
        raise InvalidArg(f"Invalid permission octal '{value}': must be <= 777")
    return mode


class GeneratedBy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str = __version__
    commit: str | None = None


class Config(BaseModel):
    """Per-repository configuration (``dvs.yaml`` / ``dvs.toml``)."""

    model_config = ConfigDict(extra="ignore")

    storage_dir: str
    permissions: int | None = None
    group: str | None = None
    hash_algo: HashAlgo = HashAlgo.BLAKE3
    metadata_format: MetadataFormat = MetadataFormat.JSON
    generated_by: GeneratedBy = Field(default_factory=GeneratedBy)

    @field_validator("permissions", mode="before")
    @classmethod
    def _parse_permissions(cls, value: Any) -> int | None:
        try:
            return parse_permissions(value)
        except InvalidArg as e:
            raise ValueError(e.message) from e

    @field_validator("hash_algo", mode="before")
    @classmethod
    def _lower_algo(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("metadata_format", mode="before")
    @classmethod
    def _lower_format(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("group", mode="before")
    @classmethod
    def _blank_group(cls, value: Any) -> Any:
        return value or None

    @field_serializer("permissions")
    def _format_permissions(self, value: int | None) -> str | None:
        return f"{value:o}" if value is not None else None

    def storage_path(self, root: Path) -> Path:
        """Absolute storage directory; relative values resolve from ``root``."""
        path = Path(self.storage_dir).expanduser()
        if not path.is_absolute():
            path = root / path
        return path.resolve()

    def to_file_dict(self) -> dict[str, Any]:
        """Serializable form with unset optional fields omitted."""
        return prune_empty(self.model_dump(mode="json"))

    def differences(self, other: Config, root: Path) -> list[str]:
        """Names of settings that differ from ``other``, for init mismatch checks."""
        diffs = []
        if self.storage_path(root) != other.storage_path(root):
            diffs.append("storage_dir")
        for name in ("permissions", "group", "hash_algo", "metadata_format"):
            if getattr(self, name) != getattr(other, name):
                diffs.append(name)
        return diffs


class AuthSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str | None = None


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_size: int | None = Field(default=None, ge=0)


class LocalConfig(BaseModel):
    """Per-user settings stored in ``.dvs/config.toml`` (not versioned)."""

    model_config = ConfigDict(extra="ignore")

    base_url: str | None = None
    auth: AuthSettings | None = None
    cache: CacheSettings | None = None

    @property
    def auth_token(self) -> str | None:
        return self.auth.token if self.auth else None

    def to_file_dict(self) -> dict[str, Any]:
        return prune_empty(self.model_dump(mode="json"))

    def is_empty(self) -> bool:
        return not self.to_file_dict()


def validate_model(model: type[BaseModel], data: dict[str, Any], source: str) -> Any:
    """Validate ``data`` against ``model``.

    Raises:
        ConfigError: With one readable line per validation problem.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = _extract_validation_errors(e)
        raise ConfigError(f"Invalid configuration in {source}: " + "; ".join(errors)) from e


def _extract_validation_errors(exc: ValidationError) -> list[str]:
    """Convert Pydantic ValidationError to list of human-readable messages."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err["loc"]) if err["loc"] else "config"
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        if err["type"] == "missing":
            errors.append(f"Missing required field: {loc}")
        else:
            errors.append(f"{loc}: {msg}")
    return errors if errors else ["Invalid configuration"]
