"""
Template Parser

Mode templates are markdown documents with a YAML header fenced by ``---``
lines. Only the header is machine-consumed; everything after the closing
fence is handed to the agent verbatim as instructions.

    ---
    id: task
    name: Task
    phases:
      - id: p0
        name: Understand
        task_config:
          title: "P0: Understand the request"
      - id: p1
        name: Implement
        task_config:
          title: "P1: Implement"
          depends_on: [p0]
    ---
    # Task mode
    ...
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError


HEADER_FENCE = "---"


@dataclass(frozen=True)
class TaskConfig:
    title: str
    depends_on: tuple[str, ...] = ()
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title, "depends_on": list(self.depends_on)}
        if self.description:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class Phase:
    id: str
    name: str
    task_config: TaskConfig

    @property
    def depends_on(self) -> tuple[str, ...]:
        return self.task_config.depends_on

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "task_config": self.task_config.to_dict()}


@dataclass(frozen=True)
class ParsedTemplate:
    metadata: dict[str, Any]
    phases: tuple[Phase, ...]
    body: str = ""
    source: Optional[Path] = field(default=None, compare=False)


def split_header(text: str, source: Optional[Path] = None) -> tuple[str, str]:
    """Split a document into (header, body). Documents without a header
    are rejected; a template without phases is meaningless."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != HEADER_FENCE:
        raise ConfigError("template must start with a '---' header block", source=source)

    for idx in range(1, len(lines)):
        if lines[idx].strip() == HEADER_FENCE:
            header = "".join(lines[1:idx])
            body = "".join(lines[idx + 1:])
            return header, body

    raise ConfigError("template header is missing its closing '---'", source=source)


def _as_str_list(value: Any, what: str, source: Optional[Path]) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ConfigError(f"{what} must be a list of non-empty strings", source=source)
    return tuple(v.strip() for v in value)


def parse_phases(raw_phases: Any, source: Optional[Path] = None) -> tuple[Phase, ...]:
    """Build and validate a phase list from its header representation."""
    if raw_phases is None:
        raw_phases = []
    if not isinstance(raw_phases, list):
        raise ConfigError("'phases' must be a list", source=source)

    phases: list[Phase] = []
    seen: set[str] = set()
    for idx, raw in enumerate(raw_phases):
        if not isinstance(raw, dict):
            raise ConfigError(f"phase #{idx + 1} must be a mapping", source=source)

        phase_id = raw.get("id")
        if not isinstance(phase_id, str) or not phase_id.strip():
            raise ConfigError(f"phase #{idx + 1} is missing an 'id'", source=source)
        phase_id = phase_id.strip()
        if phase_id in seen:
            raise ConfigError(f"duplicate phase id '{phase_id}'", source=source)
        seen.add(phase_id)

        name = raw.get("name") or phase_id
        task_raw = raw.get("task_config") or {}
        if not isinstance(task_raw, dict):
            raise ConfigError(f"phase '{phase_id}': 'task_config' must be a mapping", source=source)

        depends_on = _as_str_list(
            task_raw.get("depends_on"), f"phase '{phase_id}': depends_on", source
        )
        if len(set(depends_on)) != len(depends_on):
            raise ConfigError(f"phase '{phase_id}' lists a dependency twice", source=source)
        if phase_id in depends_on:
            raise ConfigError(f"phase '{phase_id}' depends on itself", source=source)

        title = task_raw.get("title") or str(name)
        description = task_raw.get("description")
        phases.append(Phase(
            id=phase_id,
            name=str(name),
            task_config=TaskConfig(
                title=str(title),
                depends_on=depends_on,
                description=str(description) if description else None,
            ),
        ))

    for phase in phases:
        for dep in phase.depends_on:
            if dep not in seen:
                raise ConfigError(
                    f"phase '{phase.id}' depends on unknown phase '{dep}'", source=source
                )

    cycle = find_cycle(phases)
    if cycle:
        raise ConfigError(
            f"phase dependency cycle: {' -> '.join(cycle)}", source=source
        )

    return tuple(phases)


def find_cycle(phases: tuple[Phase, ...] | list[Phase]) -> Optional[list[str]]:
    """Return the first dependency cycle as a closed path, or None.

    Iterative depth-first search; a dependency that is still on the
    in-progress set is a back-edge and closes a cycle.
    """
    edges = {p.id: list(p.depends_on) for p in phases}
    done: set[str] = set()

    for root in edges:
        if root in done:
            continue
        in_progress: set[str] = {root}
        path: list[str] = [root]
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            node, next_edge = stack[-1]
            deps = edges.get(node, [])
            if next_edge >= len(deps):
                stack.pop()
                path.pop()
                in_progress.discard(node)
                done.add(node)
                continue

            stack[-1] = (node, next_edge + 1)
            dep = deps[next_edge]
            if dep in in_progress:
                start = path.index(dep)
                # path follows "depends on" edges; report it in that direction
                return path[start:] + [dep]
            if dep in done or dep not in edges:
                continue
            in_progress.add(dep)
            path.append(dep)
            stack.append((dep, 0))

    return None


def topological_order(phases: tuple[Phase, ...] | list[Phase]) -> list[Phase]:
    """Order phases so each comes after its dependencies.

    Ties are broken by declaration order, so the result is deterministic.
    """
    remaining = list(phases)
    placed: set[str] = set()
    ordered: list[Phase] = []

    while remaining:
        for idx, phase in enumerate(remaining):
            if all(dep in placed for dep in phase.depends_on):
                ordered.append(phase)
                placed.add(phase.id)
                del remaining[idx]
                break
        else:
            cycle = find_cycle(list(phases)) or [p.id for p in remaining]
            raise ConfigError(f"phase dependency cycle: {' -> '.join(cycle)}")

    return ordered


def parse_template(text: str, source: Optional[Path] = None) -> ParsedTemplate:
    header_text, body = split_header(text, source=source)

    try:
        header = yaml.safe_load(header_text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML header: {e}", source=source) from e

    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise ConfigError("template header must be a mapping", source=source)

    phases = parse_phases(header.get("phases"), source=source)
    metadata = {k: v for k, v in header.items() if k != "phases"}
    return ParsedTemplate(metadata=metadata, phases=phases, body=body, source=source)


def parse_template_file(path: Path) -> ParsedTemplate:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError("template file not found", source=path) from e
    except OSError as e:
        raise ConfigError(f"template file unreadable: {e}", source=path) from e
    return parse_template(text, source=path)
