"""Repository initialization."""

from __future__ import annotations

from pathlib import Path

from dvs.backends import Backend, GitBackend, WorkspaceBackend
from dvs.config.constants import CONFIG_TOML, CONFIG_YAML
from dvs.config.manager import find_config_path, load_config, save_config
from dvs.config.schema import Config, parse_permissions
from dvs.core.layout import Layout
from dvs.core.manifest import Manifest
from dvs.core.metadata import MetadataFormat
from dvs.core.oid import HashAlgo
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import ConfigMismatch, GroupNotSet, NotInGitRepo, NotInitialized, StorageError
from dvs.platforms import get_adapter
from dvs.services.versioning import current_state_id, record_transition
from dvs.utils.logger import get_logger

logger = get_logger("dvs.init")


def init(
    storage_dir: str | Path,
    root: Path | None = None,
    permissions: str | int | None = None,
    group: str | None = None,
    hash_algo: str | HashAlgo | None = None,
    metadata_format: str | MetadataFormat | None = None,
    config_filename: str = CONFIG_YAML,
) -> Repository:
    """Initialize (or re-open) a repository.

    Idempotent when called again with the same settings.

    Args:
        storage_dir: Shared object storage directory; relative paths resolve
            from the repository root.
        root: Directory to initialize. Defaults to the enclosing git
            repository, or the current directory when there is none.
        permissions: Octal mode applied to stored objects, e.g. ``"664"``.
        group: Group applied to stored objects.
        hash_algo: ``blake3`` (default), ``sha256`` or ``xxh3``.
        metadata_format: ``json`` (default) or ``toml``.
        config_filename: ``dvs.yaml`` or ``dvs.toml`` for a new config.

    Raises:
        ConfigMismatch: If a config exists with different settings.
        GroupNotSet: If ``group`` does not exist on this system.
        InvalidArg: For a bad permission octal, algorithm or format.
        StorageError: If ``storage_dir`` exists and is not a directory.
    """
    backend = _resolve_backend(root)
    requested = Config(
        storage_dir=str(storage_dir),
        permissions=parse_permissions(permissions),
        group=group or None,
        hash_algo=HashAlgo.parse(str(hash_algo)) if hash_algo else HashAlgo.BLAKE3,
        metadata_format=(
            MetadataFormat.parse(str(metadata_format))
            if metadata_format
            else MetadataFormat.JSON
        ),
    )

    if requested.group and get_adapter().group_id(requested.group) is None:
        raise GroupNotSet(requested.group)

    storage_path = requested.storage_path(backend.root)
    if storage_path.exists() and not storage_path.is_dir():
        raise StorageError(f"Storage path exists but is not a directory: {storage_path}")

    existing_path = find_config_path(backend.root)
    if existing_path is not None:
        existing = load_config(backend.root)
        diffs = existing.differences(requested, backend.root)
        if diffs:
            raise ConfigMismatch(
                f"Existing configuration in {existing_path.name} differs in: "
                + ", ".join(diffs)
            )
        config = existing
    else:
        config = requested

    created = not storage_path.exists()
    storage_path.mkdir(parents=True, exist_ok=True)
    if created and config.permissions is not None:
        # Directories need the execute bit to be traversable
        get_adapter().apply_permissions(storage_path, config.permissions | 0o111)

    if existing_path is None:
        if config_filename not in (CONFIG_YAML, CONFIG_TOML):
            config_filename = CONFIG_YAML
        save_config(backend.root, config, config_filename)

    Layout(backend.root).ensure()
    repo = Repository(backend=backend, config=config)
    repo.ensure_gitignore_entry()

    if not repo.manifest_path.exists():
        repo.save_manifest(Manifest())

    reflog = repo.reflog()
    if len(reflog) == 0:
        state_id = current_state_id(repo)
        reflog.record(
            actor=get_adapter().current_user(),
            op=ReflogOp.INIT,
            new=state_id,
            message="Initialized repository",
        )
    else:
        # Re-running init only journals if it changed something
        head = repo.layout.read_head()
        record_transition(repo, ReflogOp.INIT, head)

    logger.info(
        "Repository initialized",
        root=str(backend.root),
        backend=backend.kind,
        storage_dir=str(storage_path),
        hash_algo=config.hash_algo.value,
    )
    return repo


def _resolve_backend(root: Path | None) -> Backend:
    start = Path(root).resolve() if root is not None else Path.cwd()
    start.mkdir(parents=True, exist_ok=True)
    try:
        return GitBackend.discover(start)
    except NotInGitRepo:
        pass
    try:
        return WorkspaceBackend.discover(start)
    except NotInitialized:
        return WorkspaceBackend(start)
