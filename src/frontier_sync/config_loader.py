"""
Layered YAML configuration for frontier_sync.

Config files are found by convention, may pull in fragments with
``!include``, may reference environment variables as ``${VAR}`` or
``${VAR:-default}``, and are merged section by section with the project
file winning over the global one.

Usage:
    from frontier_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(workspace)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FRONTIER_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".frontier_sync"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")
GLOBAL_CONFIG_PATH = Path(".config") / "frontier_sync" / "config.yml"

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")


def _expand_env_ref(match: re.Match) -> str:
    value = os.environ.get(match.group("name"))
    if value:
        return value
    return match.group("default") or ""


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  An unterminated ``${`` is kept as written.
    """
    return _ENV_REF.sub(_expand_env_ref, value)


def _interpolate_recursive(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _interpolate_recursive(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_interpolate_recursive(item) for item in node]
    if isinstance(node, str):
        return interpolate_env_vars(node)
    return node


# ---------------------------------------------------------------------------
# YAML loading with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader that resolves ``!include path`` against the including file.

    A private subclass keeps ``yaml.safe_load`` free of the tag.  The chain
    of files being loaded is carried on the loader so that a file including
    one of its own ancestors is reported instead of recursing forever.
    """

    def __init__(self, stream, chain: tuple[Path, ...]):
        super().__init__(stream)
        self.chain = chain

    def construct_include(self, node: yaml.ScalarNode) -> Any:
        target = Path(self.construct_scalar(node))
        if not target.is_absolute():
            target = self.chain[-1].parent / target
        target = target.resolve()

        if target in self.chain:
            cycle = " -> ".join(str(p) for p in (*self.chain, target))
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} (referenced from {self.chain[-1]})"
            )
        return _load_yaml_with_includes(target, _include_stack=self.chain)


ConfigLoader.add_constructor("!include", ConfigLoader.construct_include)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: tuple[Path, ...] = (),
) -> Any:
    path = Path(path).resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh, (*_include_stack, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files(workspace: str | Path | None = None) -> list[Path]:
    """Existing config files, highest precedence first.

    1. The file named by ``FRONTIER_SYNC_CONFIG``.
    2. ``<workspace>/.frontier_sync/config.yml`` (or ``config.yaml``);
       *workspace* defaults to the current directory.
    3. ``~/.config/frontier_sync/config.yml``.
    """
    root = Path(workspace) if workspace is not None else Path.cwd()
    candidates = [root / PROJECT_CONFIG_DIR / name for name in PROJECT_CONFIG_NAMES]
    candidates.append(Path.home() / GLOBAL_CONFIG_PATH)

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.insert(0, Path(explicit).expanduser().resolve())

    return [path for path in candidates if path.exists()]


_STARTER_CONFIG = """\
# frontier-sync configuration
#
# Credentials are never read from this file. Supply them with
# FRONTIER_SYNC_USERNAME / FRONTIER_SYNC_TOKEN or --username / --password.
#
# remote:
#   host_url: https://gitlab.com
#   api_url: https://api.frontierrnd.com
#   connectivity_timeout: 5
#   check_connectivity: true
#
# lock:
#   stale_after_seconds: 30
#   stuck_after_seconds: 120
#   heartbeat_interval_seconds: 5
#
# sync:
#   commit_message: Local changes
#   auto_merge_clean_divergence: false
#   max_parallel_reads: 8
#
# author:
#   name: Jane Translator
#   email: jane@example.org
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(
    target: Path | None = None,
    workspace: str | Path | None = None,
) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to write the starter.  Defaults to the project
            config path under *workspace*.
        workspace: Project root (defaults to the current directory).
    """
    found = discover_config_files(workspace)
    if found:
        logger.debug("Config file already exists: %s", found[0])
        return found[0]

    root = Path(workspace) if workspace is not None else Path.cwd()
    path = target or root / PROJECT_CONFIG_DIR / PROJECT_CONFIG_NAMES[0]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(workspace: str | Path | None = None) -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Files are applied from lowest to highest precedence and a later file
    replaces whole top-level sections of an earlier one.  Environment
    references are expanded after merging.  With no config files at all
    the result is ``{}``.

    Raises:
        OSError: If a config or included file cannot be read.
        ValueError: On a circular include.
        yaml.YAMLError: On malformed YAML.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files(workspace)):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error("Failed to load config file %s: %s", path, e)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    if not merged:
        logger.debug("No config values found, using defaults")
    return _interpolate_recursive(merged)
