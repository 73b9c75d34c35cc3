"""Tests for repository initialization and configuration."""

from __future__ import annotations

import grp
import os
from pathlib import Path

import pytest
import yaml

from dvs.config.manager import (
    get_config_value,
    get_local_value,
    load_config,
    load_local_config,
    local_config_path,
    save_config,
    save_local_config,
    set_config_value,
    set_local_value,
)
from dvs.config.schema import LocalConfig, parse_permissions
from dvs.core.metadata import MetadataFormat
from dvs.core.oid import HashAlgo
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import (
    ConfigError,
    ConfigMismatch,
    GroupNotSet,
    InvalidArg,
    NotInitialized,
    StorageError,
)
from dvs.services.init import init


def test_init_creates_layout(repo: Repository, storage_dir: Path):
    """init writes the config, state dirs, an empty manifest and an Init entry."""
    root = repo.root

    assert (root / "dvs.yaml").is_file()
    assert (root / ".dvs" / "cache" / "objects").is_dir()
    assert (root / "dvs.lock").is_file()
    assert storage_dir.is_dir()

    entries = repo.reflog().read_recent()
    assert len(entries) == 1
    assert entries[0].entry.op is ReflogOp.INIT
    assert repo.layout.read_head() == entries[0].entry.new


def test_init_is_idempotent(repo: Repository, storage_dir: Path):
    again = init(storage_dir=storage_dir, root=repo.root)

    assert again.config.storage_path(again.root) == storage_dir.resolve()
    assert len(again.reflog()) == 1


def test_init_mismatch(repo: Repository, tmp_path: Path, storage_dir: Path):
    with pytest.raises(ConfigMismatch) as excinfo:
        init(storage_dir=tmp_path / "other", root=repo.root)
    assert "storage_dir" in excinfo.value.message

    with pytest.raises(ConfigMismatch):
        init(storage_dir=storage_dir, root=repo.root, hash_algo="sha256")


def test_init_rejects_bad_arguments(tmp_path: Path):
    root = tmp_path / "fresh"
    with pytest.raises(InvalidArg):
        init(storage_dir=tmp_path / "s", root=root, permissions="999")
    with pytest.raises(InvalidArg):
        init(storage_dir=tmp_path / "s", root=root, hash_algo="md5")
    with pytest.raises(GroupNotSet):
        init(storage_dir=tmp_path / "s", root=root, group="no-such-group-dvs-test")
    assert not (root / "dvs.yaml").exists()


def test_init_storage_path_is_a_file(tmp_path: Path):
    blocker = tmp_path / "storage"
    blocker.write_text("not a dir", encoding="utf-8")

    with pytest.raises(StorageError):
        init(storage_dir=blocker, root=tmp_path / "repo")


def test_init_with_toml_settings(tmp_path: Path):
    root = tmp_path / "repo"
    repo = init(
        storage_dir="../storage",
        root=root,
        permissions="664",
        hash_algo="XXH3",
        metadata_format="toml",
        config_filename="dvs.toml",
    )

    assert (root / "dvs.toml").is_file()
    assert repo.manifest_path.name == "dvs.lock.toml"
    loaded = load_config(root)
    assert loaded.permissions == 0o664
    assert loaded.hash_algo is HashAlgo.XXH3
    assert loaded.metadata_format is MetadataFormat.TOML
    assert loaded.storage_path(root) == (tmp_path / "storage").resolve()


def test_init_with_existing_group(tmp_path: Path):
    group = grp.getgrgid(os.getgid()).gr_name
    repo = init(storage_dir=tmp_path / "s", root=tmp_path / "repo", group=group)

    assert repo.config.group == group
    assert repo.group_id() == os.getgid()


def test_yaml_permissions_written_as_octal_text(repo: Repository):
    config = set_config_value(repo.config, "permissions", "640")
    save_config(repo.root, config)

    raw = yaml.safe_load((repo.root / "dvs.yaml").read_text(encoding="utf-8"))
    assert raw["permissions"] == "640"
    assert load_config(repo.root).permissions == 0o640


def test_unquoted_yaml_permissions_are_octal(tmp_path: Path):
    (tmp_path / "dvs.yaml").write_text(
        "storage_dir: /srv/dvs\npermissions: 664\n", encoding="utf-8"
    )
    assert load_config(tmp_path).permissions == 0o664


@pytest.mark.parametrize(
    ("value", "expected"),
    [("664", 0o664), ("0o755", 0o755), (0o600, 0o600), (None, None), ("", None)],
)
def test_parse_permissions(value, expected):
    assert parse_permissions(value) == expected


@pytest.mark.parametrize("value", ["888", "1777", "rw-r--r--", 0o1000, -1])
def test_parse_permissions_rejects(value):
    with pytest.raises(InvalidArg):
        parse_permissions(value)


def test_load_config_errors(tmp_path: Path):
    with pytest.raises(NotInitialized):
        load_config(tmp_path)

    (tmp_path / "dvs.yaml").write_text("hash_algo: blake3\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)

    (tmp_path / "dvs.yaml").write_text("storage_dir: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_config_key_access(repo: Repository):
    assert get_config_value(repo.config, "hash_algo") == "blake3"
    assert get_config_value(repo.config, "group") is None

    updated = set_config_value(repo.config, "metadata_format", "TOML")
    assert updated.metadata_format is MetadataFormat.TOML
    assert repo.config.metadata_format is MetadataFormat.JSON

    with pytest.raises(InvalidArg):
        get_config_value(repo.config, "nope")
    with pytest.raises(InvalidArg):
        set_config_value(repo.config, "nope", "x")
    with pytest.raises(InvalidArg):
        set_config_value(repo.config, "permissions", "9")


def test_local_config_defaults_when_missing(repo: Repository):
    local = load_local_config(repo.root)

    assert local == LocalConfig()
    assert local.auth_token is None
    assert get_local_value(local, "auth.token") is None


def test_local_config_set_and_clear(repo: Repository):
    """Clearing the last field of a section drops the section and empty files."""
    local = set_local_value(LocalConfig(), "base_url", "http://objects.local")
    local = set_local_value(local, "auth.token", "s3cret")
    save_local_config(repo.root, local)

    reloaded = load_local_config(repo.root)
    assert reloaded.base_url == "http://objects.local"
    assert reloaded.auth_token == "s3cret"
    assert "[auth]" in local_config_path(repo.root).read_text(encoding="utf-8")

    cleared = set_local_value(reloaded, "auth.token", None)
    assert cleared.auth is None
    cleared = set_local_value(cleared, "base_url", None)
    assert cleared.is_empty()

    save_local_config(repo.root, cleared)
    assert not local_config_path(repo.root).exists()


def test_local_config_validation(repo: Repository):
    with pytest.raises(ConfigError):
        set_local_value(LocalConfig(), "cache.max_size", -5)
    with pytest.raises(InvalidArg):
        set_local_value(LocalConfig(), "remote.url", "x")
