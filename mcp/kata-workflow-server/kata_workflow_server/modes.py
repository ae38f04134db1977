"""
Mode Definition Store

Loads mode definitions from up to three mode files and merges them:

  1. Built-in:  kata_workflow_server/batteries/modes.yaml
  2. User:      $XDG_CONFIG_HOME/kata/modes.yaml (~/.config/kata/modes.yaml)
  3. Project:   <project>/.claude/workflows/modes.yaml (config: modes_file)

A later layer replaces an earlier definition with the same id as a whole;
no field of the replaced definition survives. Any malformed layer fails the
whole resolution, so a session never runs under built-in policy the project
meant to override.

Mode file shape:

    modes:
      task:
        name: Task
        description: Small focused change
        aliases: [quick]
        workflow_prefix: TK
        template: task.md          # or inline `phases: [...]`
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config_tools import _load_yaml, config_get_effective, resolve_config_path
from .errors import ConfigError, NotFoundError
from .template_parser import Phase, parse_phases, parse_template_file


logger = logging.getLogger(__name__)

BATTERIES_DIR = Path(__file__).resolve().parent / "batteries"
BUILTIN_MODES_FILE = BATTERIES_DIR / "modes.yaml"
USER_MODES_DIRNAME = "kata"


@dataclass(frozen=True)
class ModeDefinition:
    id: str
    name: str
    phases: tuple[Phase, ...]
    description: str = ""
    aliases: tuple[str, ...] = ()
    workflow_prefix: Optional[str] = None
    instructions: str = ""
    source: Optional[Path] = field(default=None, compare=False)

    @property
    def prefix(self) -> str:
        if self.workflow_prefix:
            return self.workflow_prefix.upper()
        letters = re.sub(r"[^A-Za-z0-9]", "", self.id)
        return (letters[:2] or "WF").upper()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "aliases": list(self.aliases),
            "workflow_prefix": self.prefix,
            "phases": [p.to_dict() for p in self.phases],
            "source": str(self.source) if self.source else None,
        }


def get_user_modes_path() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / USER_MODES_DIRNAME / "modes.yaml"


def get_project_modes_path(project_dir: Optional[str] = None) -> Path:
    effective = config_get_effective(project_dir)
    project = Path(effective["project_dir"])
    return resolve_config_path(effective["config"]["modes_file"], project)


def _resolve_template_path(template: str, modes_file: Path) -> Path:
    path = Path(template).expanduser()
    if path.is_absolute():
        return path
    base = modes_file.parent
    for candidate in (base / path, base / "templates" / path):
        if candidate.exists():
            return candidate
    raise ConfigError(f"template '{template}' not found next to the mode file", source=modes_file)


def _definition_from_entry(mode_id: str, entry: Any, modes_file: Path) -> ModeDefinition:
    if not isinstance(entry, dict):
        raise ConfigError(f"mode '{mode_id}' must be a mapping", source=modes_file)

    template = entry.get("template")
    if template is not None and "phases" in entry:
        raise ConfigError(
            f"mode '{mode_id}' declares both 'template' and inline 'phases'", source=modes_file
        )

    instructions = ""
    metadata: dict[str, Any] = {}
    source = modes_file
    if template is not None:
        if not isinstance(template, str):
            raise ConfigError(f"mode '{mode_id}': 'template' must be a path", source=modes_file)
        template_path = _resolve_template_path(template, modes_file)
        parsed = parse_template_file(template_path)
        phases = parsed.phases
        instructions = parsed.body
        metadata = parsed.metadata
        source = template_path
    else:
        phases = parse_phases(entry.get("phases"), source=modes_file)

    if not phases:
        raise ConfigError(f"mode '{mode_id}' has no phases", source=source)

    aliases = entry.get("aliases", metadata.get("aliases")) or []
    if isinstance(aliases, str):
        aliases = [aliases]
    if not isinstance(aliases, list):
        raise ConfigError(f"mode '{mode_id}': 'aliases' must be a list", source=modes_file)

    return ModeDefinition(
        id=mode_id,
        name=str(entry.get("name") or metadata.get("name") or mode_id),
        phases=phases,
        description=str(entry.get("description") or metadata.get("description") or ""),
        aliases=tuple(str(a) for a in aliases),
        workflow_prefix=entry.get("workflow_prefix") or metadata.get("workflow_prefix"),
        instructions=instructions,
        source=source,
    )


def load_mode_file(path: Path) -> dict[str, ModeDefinition]:
    """Parse one mode file into definitions keyed by id."""
    data = _load_yaml(path)
    if data is None:
        raise ConfigError("mode file not found", source=path)

    modes = data.get("modes", {})
    if modes is None:
        modes = {}
    if not isinstance(modes, dict):
        raise ConfigError("'modes' must be a mapping of mode id to definition", source=path)

    definitions = {}
    for mode_id, entry in modes.items():
        mode_id = str(mode_id).strip()
        if not mode_id:
            raise ConfigError("mode ids must be non-empty", source=path)
        definitions[mode_id] = _definition_from_entry(mode_id, entry, path)
    return definitions


def get_mode_sources(project_dir: Optional[str] = None) -> list[Path]:
    """Mode files that exist, in precedence order (lowest first)."""
    sources = [BUILTIN_MODES_FILE]
    for path in (get_user_modes_path(), get_project_modes_path(project_dir)):
        if path.exists() and path not in sources:
            sources.append(path)
    return sources


def load_modes(project_dir: Optional[str] = None) -> dict[str, ModeDefinition]:
    merged: dict[str, ModeDefinition] = {}
    for path in get_mode_sources(project_dir):
        layer = load_mode_file(path)
        for mode_id, definition in layer.items():
            if mode_id in merged:
                logger.debug("Mode '%s' from %s replaces %s", mode_id, path, merged[mode_id].source)
            merged[mode_id] = definition
    return merged


def load_adhoc_mode(template_path: Path) -> ModeDefinition:
    """Parse a one-off template; it never joins the merged set."""
    template_path = Path(template_path).expanduser()
    parsed = parse_template_file(template_path)
    if not parsed.phases:
        raise ConfigError("template has no phases", source=template_path)

    meta = parsed.metadata
    mode_id = str(meta.get("id") or template_path.stem)
    aliases = meta.get("aliases") or []
    return ModeDefinition(
        id=mode_id,
        name=str(meta.get("name") or mode_id),
        phases=parsed.phases,
        description=str(meta.get("description") or ""),
        aliases=tuple(aliases) if isinstance(aliases, list) else (str(aliases),),
        workflow_prefix=meta.get("workflow_prefix"),
        instructions=parsed.body,
        source=template_path,
    )


def resolve_mode(
    name: Optional[str],
    project_dir: Optional[str] = None,
    template_path: Optional[Path] = None,
) -> ModeDefinition:
    """Resolve a mode by id or alias, or from an ad-hoc template path."""
    if template_path is not None:
        return load_adhoc_mode(template_path)

    if not name:
        raise NotFoundError("No mode name given")

    modes = load_modes(project_dir)
    if name in modes:
        return modes[name]

    lowered = name.lower()
    for definition in modes.values():
        if definition.id.lower() == lowered or lowered in (a.lower() for a in definition.aliases):
            return definition

    available = ", ".join(sorted(modes))
    raise NotFoundError(f"Unknown mode '{name}'. Available modes: {available}")


def list_modes(project_dir: Optional[str] = None) -> list[dict[str, Any]]:
    return [
        {
            "id": d.id,
            "name": d.name,
            "description": d.description,
            "aliases": list(d.aliases),
            "phases": [p.id for p in d.phases],
            "source": str(d.source) if d.source else None,
        }
        for d in load_modes(project_dir).values()
    ]
