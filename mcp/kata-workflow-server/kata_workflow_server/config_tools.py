"""
Configuration Tools for the kata workflow engine

Handles YAML configuration cascade merge:
  1. Defaults:         DEFAULT_CONFIG below
  2. Global config:    ~/.claude/workflow-config.yaml
  3. Project config:   <project>/.claude/workflow-config.yaml

Each level overrides the previous. Also owns project root discovery and
logging setup for the CLI, hook and MCP entry points.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError


CONFIG_FILENAME = "workflow-config.yaml"

DEFAULT_CONFIG = {
    "sessions_dir": ".claude/sessions",
    "modes_file": ".claude/workflows/modes.yaml",
    "templates_dir": ".claude/workflows/templates",
    "task_store": {
        "path": "~/.claude/tasks",
    },
    "workflow_id": {
        "random_suffix": True,
    },
    "hooks": {
        "stop_enforcement": True,
        "prompt_reminder": True,
    },
    "log_level": "WARNING",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _validate_config(config: dict, defaults: dict, prefix: str = "") -> list[str]:
    """Validate config against defaults, returning warnings for unknown keys."""
    warnings = []
    for key, value in config.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if key not in defaults:
            warnings.append(f"Unknown config key: '{full_key}'")
        elif isinstance(value, dict) and isinstance(defaults.get(key), dict):
            warnings.extend(_validate_config(value, defaults[key], full_key))
        elif value is not None:
            expected_type = type(defaults.get(key))
            if expected_type is not type(None) and not isinstance(value, expected_type):
                warnings.append(
                    f"Invalid type for '{full_key}': expected {expected_type.__name__}, got {type(value).__name__}"
                )
    return warnings


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Optional[dict]:
    """Load a YAML mapping, or None when the file does not exist.

    Raises ConfigError for unreadable YAML or a non-mapping document so a
    broken config never silently degrades to defaults.
    """
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}", source=path) from e
    except OSError as e:
        raise ConfigError(f"unreadable: {e}", source=path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("top-level document must be a mapping", source=path)
    return data


def resolve_project_dir(project_dir: Optional[str] = None) -> Path:
    """Locate the project root.

    Order: explicit argument, CLAUDE_PROJECT_DIR, nearest ancestor of cwd
    containing .claude/, cwd.
    """
    if project_dir:
        return Path(project_dir).expanduser().resolve()

    env_root = os.environ.get("CLAUDE_PROJECT_DIR")
    if env_root:
        return Path(env_root).expanduser().resolve()

    cwd = Path.cwd().resolve()
    for candidate in (cwd, *cwd.parents):
        if (candidate / ".claude").is_dir():
            return candidate
    return cwd


def _get_global_config_path() -> Path:
    return Path.home() / ".claude" / CONFIG_FILENAME


def _get_project_config_path(project_dir: Optional[str] = None) -> Path:
    return resolve_project_dir(project_dir) / ".claude" / CONFIG_FILENAME


def config_get_effective(project_dir: Optional[str] = None) -> dict[str, Any]:
    config = DEFAULT_CONFIG.copy()
    warnings = []

    global_path = _get_global_config_path()
    global_config = _load_yaml(global_path)
    if global_config:
        warnings.extend(_validate_config(global_config, DEFAULT_CONFIG))
        config = _deep_merge(config, global_config)

    project_path = _get_project_config_path(project_dir)
    project_config = _load_yaml(project_path)
    if project_config:
        warnings.extend(_validate_config(project_config, DEFAULT_CONFIG))
        config = _deep_merge(config, project_config)

    sources = []
    if global_config is not None:
        sources.append(str(global_path))
    if project_config is not None:
        sources.append(str(project_path))

    return {
        "config": config,
        "sources": sources,
        "warnings": warnings,
        "project_dir": str(resolve_project_dir(project_dir)),
        "has_global": global_config is not None,
        "has_project": project_config is not None,
    }


def resolve_config_path(value: str, project_dir: Path) -> Path:
    """Resolve a configured path: ~ expands, relative paths hang off the project."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = project_dir / path
    return path


def configure_logging(level: Optional[str] = None) -> None:
    """Send log records to stderr; stdout carries hook and CLI output."""
    name = str(level or os.environ.get("KATA_LOG_LEVEL") or DEFAULT_CONFIG["log_level"]).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.WARNING),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def get_log_level(project_dir: Optional[str] = None) -> Optional[str]:
    """KATA_LOG_LEVEL, else the configured log_level."""
    if os.environ.get("KATA_LOG_LEVEL"):
        return os.environ["KATA_LOG_LEVEL"]
    try:
        return config_get_effective(project_dir)["config"].get("log_level")
    except ConfigError:
        # The command that loads the config next reports it.
        return None
