"""Hard-coded names and defaults not meant to be user-configurable."""

CONFIG_YAML = "dvs.yaml"
CONFIG_TOML = "dvs.toml"
CONFIG_FILENAMES = (CONFIG_YAML, CONFIG_TOML)

MANIFEST_JSON = "dvs.lock"
MANIFEST_TOML = "dvs.lock.toml"

DVS_DIR = ".dvs"
LOCAL_CONFIG_FILENAME = "config.toml"

SIDECAR_SUFFIX = ".dvs"
SIDECAR_TOML_SUFFIX = ".dvs.toml"

DVSIGNORE = ".dvsignore"
GITIGNORE = ".gitignore"

DEFAULT_REMOTE_NAME = "origin"

MANIFEST_VERSION = 1
STATE_VERSION = 1
