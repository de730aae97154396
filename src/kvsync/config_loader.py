"""
YAML config files for kvsync.

kvsync reads up to three YAML files, most specific first:

    $KVSYNC_CONFIG                   explicit path
    ./.kvsync/config.yml             per-project
    ~/.config/kvsync/config.yml      per-user

A section (``remote:``, ``storage:``, ...) in a more specific file replaces
the same section from a less specific one as a whole.  String values may
reference the environment as ``${NAME}`` or ``${NAME:-fallback}``.

The merged dict is validated by ``config_schema.build_config``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KVSYNC_CONFIG"
PROJECT_CONFIG = Path(".kvsync") / "config.yml"
USER_CONFIG = Path(".config") / "kvsync" / "config.yml"

# ${NAME} or ${NAME:-fallback}; an unterminated "${" never matches
_REFERENCE = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def _substitute(match: re.Match) -> str:
    name, fallback = match.group(1), match.group(2)
    current = os.environ.get(name)
    if current:
        return current
    return fallback if fallback is not None else ""


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` / ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    there is none.
    """
    return _REFERENCE.sub(_substitute, value)


def _interpolate_recursive(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _interpolate_recursive(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_interpolate_recursive(item) for item in node]
    if isinstance(node, str):
        return interpolate_env_vars(node)
    return node


# ---------------------------------------------------------------------------
# Locating files
# ---------------------------------------------------------------------------


def _candidate_paths() -> list[Path]:
    paths = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        paths.append(Path(explicit).expanduser().resolve())
    paths.append(Path.cwd() / PROJECT_CONFIG)
    paths.append(Path.home() / USER_CONFIG)
    return paths


def discover_config_files() -> list[Path]:
    """Config files present on disk, most specific first."""
    return [path for path in _candidate_paths() if path.exists()]


def resolve_config_path() -> Path:
    """The file kvsync reads first, or where a new one would be created.

    With no config on disk this is ``./.kvsync/config.yml``.  Nothing is
    written; see ``ensure_config()``.
    """
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_CONFIG


_STARTER_CONFIG = """\
# kvsync configuration
#
# Environment variables take precedence over this file:
#   KVSYNC_URL, KVSYNC_STORE, KVSYNC_TIMEOUT, KVSYNC_INTERVAL
#
# remote:
#   url: https://script.example.com/exec
#   timeout: 30
#   ping_timeout: 10
#   interval: 60
#
# storage:
#   path: ~/.local/share/kvsync/store.db
#
# sync:
#   notes_key: userNotes
#   confirm_keys: [statusesConfig]
#   delimiter: ","
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to write the starter file.  Defaults to
            ``resolve_config_path()``.  Ignored when a config file is
            already present.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Reading and merging
# ---------------------------------------------------------------------------


def _read_sections(path: Path) -> dict[str, Any]:
    logger.debug("Reading config %s", path)
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError:
        logger.error("Config file %s is not valid YAML", path)
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring %s: expected a mapping of sections, got %s",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict of sections.

    Less specific files are read first so that each more specific file's
    sections replace theirs.  Environment references are expanded after
    the merge.  With no files the result is ``{}``.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found")
        return {}

    sections: dict[str, Any] = {}
    for path in reversed(paths):
        sections.update(_read_sections(path))
    return _interpolate_recursive(sections)
