"""
Hierarchical configuration loader for content_sync.

Finds YAML config files by convention, resolves ``!include`` directives,
interpolates ``${VAR}`` / ``${VAR:-default}`` references and merges the
files so the project-level file wins over the user-level one.

Usage:
    from content_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CONTENT_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".content_sync"
CONFIG_FILENAMES = ("config.yml", "config.yaml")

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` references in *value*.

    An unset or empty variable yields its default, or ``""`` without one.
    Text like ``${`` that never closes is left as-is.
    """

    def _substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        current = os.environ.get(name)
        if current:
            return current
        return default if default is not None else ""

    return _ENV_REF.sub(_substitute, value)


def _interpolate_tree(node: Any) -> Any:
    match node:
        case str():
            return interpolate_env_vars(node)
        case dict():
            return {key: _interpolate_tree(value) for key, value in node.items()}
        case list():
            return [_interpolate_tree(item) for item in node]
        case _:
            return node


# ---------------------------------------------------------------------------
# YAML loading with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` subclass that understands ``!include``.

    A private subclass keeps the global ``SafeLoader`` untouched.  Each load
    carries the chain of files being read so include cycles are caught.
    """

    include_chain: list[Path]


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by an ``!include`` tag, relative to its parent."""
    raw_path = Path(loader.construct_scalar(node))
    including_file = Path(loader.name).resolve()
    target = raw_path if raw_path.is_absolute() else including_file.parent / raw_path
    target = target.resolve()

    if target in loader.include_chain:
        cycle = " -> ".join(str(p) for p in [*loader.include_chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {including_file})"
        )

    return load_yaml_file(target, include_chain=[*loader.include_chain, target])


IncludeLoader.add_constructor("!include", _construct_include)


def load_yaml_file(path: Path, *, include_chain: list[Path] | None = None) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = IncludeLoader(fh)
        loader.include_chain = include_chain or [path]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _candidate_paths() -> list[Path]:
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    candidates.extend(project_dir / name for name in CONFIG_FILENAMES)

    user_dir = Path.home() / ".config" / "content_sync"
    candidates.extend(user_dir / name for name in CONFIG_FILENAMES)
    return candidates


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Search order:
        1. ``CONTENT_SYNC_CONFIG`` env var (explicit path).
        2. ``.content_sync/config.yml`` (or ``.yaml``) in the CWD.
        3. ``~/.config/content_sync/config.yml`` (or ``.yaml``).
    """
    seen: set[Path] = set()
    found: list[Path] = []
    for path in _candidate_paths():
        if path.exists() and path not in seen:
            seen.add(path)
            found.append(path)
    return found


# ---------------------------------------------------------------------------
# Bootstrapping
# ---------------------------------------------------------------------------

STARTER_CONFIG = """\
# content-sync configuration
#
# Values may reference environment variables: ${VAR} or ${VAR:-default}.
# Environment variables CONTENT_SYNC_STATE_DIR, CONTENT_SYNC_DEFAULT_STRATEGY
# and CONTENT_SYNC_STALE_AFTER override the sync section.
#
# sync:
#   state_dir: .content_sync
#   default_strategy: manual_merge   # local_wins | remote_wins | auto_merge
#   stale_after_seconds: 900
#   max_parallel_operations: 5
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """The active config file, or the default project path if none exists.

    Does not create anything; see ``ensure_config()``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILENAMES[0]


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied lowest precedence first; a later file's top-level
    sections replace earlier ones wholesale.  Env var references are
    resolved after merging.  With no files, returns ``{}``.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-mapping root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
