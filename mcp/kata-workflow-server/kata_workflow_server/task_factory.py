"""
Task Factory

Turns a mode's phase graph into concrete tasks in the task store when the
mode is entered. Phases are created in dependency order, so every phase can
point at the real task ids of the phases it waits on.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .errors import MaterializationError
from .modes import ModeDefinition
from .task_store import TaskStore
from .template_parser import topological_order


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterializeResult:
    workflow_id: str
    created_task_ids: dict[str, str] = field(default_factory=dict)
    first_phase: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "created_task_ids": dict(self.created_task_ids),
            "first_phase": self.first_phase,
        }


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_title(template: str, values: dict[str, Any]) -> str:
    """Fill {placeholders}; unknown ones are left untouched."""
    try:
        return template.format_map(_KeepMissing(values))
    except (ValueError, IndexError, AttributeError):
        # Stray braces or positional fields: keep the title literal.
        return template


def generate_workflow_id(
    mode: ModeDefinition,
    existing_ids: Iterable[str] = (),
    now: Optional[datetime] = None,
    random_suffix: bool = True,
) -> str:
    """<PREFIX>-<MMDD>-<SEQ>[-<RAND>], e.g. TK-1019-01-9f3a.

    SEQ counts earlier workflows with the same prefix and date in this
    session; RAND guards against two sessions choosing the same SEQ.
    """
    now = now or datetime.now(timezone.utc)
    stem = f"{mode.prefix}-{now:%m%d}"
    seq = sum(1 for wid in existing_ids if wid and wid.startswith(stem + "-")) + 1
    workflow_id = f"{stem}-{seq:02d}"
    if random_suffix:
        workflow_id = f"{workflow_id}-{secrets.token_hex(2)}"
    return workflow_id


def materialize(
    mode: ModeDefinition,
    store: TaskStore,
    workflow_id: str,
    context: Optional[dict[str, Any]] = None,
) -> MaterializeResult:
    """Create one task per phase and wire dependency edges between task ids.

    Stops at the first failed creation and raises MaterializationError with
    the phases created so far; already created tasks are left in place.
    """
    values = dict(context or {})
    values.update({
        "workflow_id": workflow_id,
        "mode_id": mode.id,
        "mode_name": mode.name,
    })

    ordered = topological_order(mode.phases)
    created: dict[str, str] = {}

    for phase in ordered:
        phase_values = dict(values, phase_id=phase.id, phase_name=phase.name)
        title = render_title(phase.task_config.title, phase_values)
        description = phase.task_config.description
        if description:
            description = render_title(description, phase_values)
        depends_on = [created[dep] for dep in phase.depends_on]
        try:
            task_id = store.create(
                title,
                workflow_id=workflow_id,
                depends_on=depends_on,
                description=description,
                metadata={"workflowId": workflow_id, "mode": mode.id, "phase": phase.id},
            )
        except Exception as e:
            logger.error(
                "Workflow %s: creating task for phase %s failed after %d of %d phases",
                workflow_id, phase.id, len(created), len(ordered),
            )
            raise MaterializationError(workflow_id, created, phase.id, e) from e
        created[phase.id] = task_id

    first_phase = ordered[0].id if ordered else None
    logger.info("Workflow %s: created %d tasks for mode %s", workflow_id, len(created), mode.id)
    return MaterializeResult(workflow_id=workflow_id, created_task_ids=created, first_phase=first_phase)
