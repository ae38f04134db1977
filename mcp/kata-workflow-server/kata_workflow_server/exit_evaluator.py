"""
Exit Evaluator

Decides whether a session may stop: every task of its active workflow must
be closed. Dependency satisfaction does not matter here; an unblocked but
open task still blocks exit. Read-only and safe to call repeatedly.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .session_state import SessionState, SessionStore
from .task_store import Task, TaskStatus, TaskStore


logger = logging.getLogger(__name__)

MISSING = "missing"


@dataclass(frozen=True)
class TaskSummary:
    id: str
    title: str
    status: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "title": self.title, "status": self.status}


@dataclass(frozen=True)
class ExitReport:
    allowed: bool
    reason: str
    blocking: tuple[TaskSummary, ...] = field(default_factory=tuple)
    workflow_id: Optional[str] = None
    mode: Optional[str] = None
    total_tasks: int = 0

    def format_message(self) -> str:
        if self.allowed:
            return self.reason
        lines = [
            f"Cannot exit {self.mode or 'the current'} mode: "
            f"{len(self.blocking)} of {self.total_tasks} tasks in workflow {self.workflow_id} are not closed.",
        ]
        for task in self.blocking:
            lines.append(f"  - [{task.status}] #{task.id} {task.title}")
        lines.append("Complete these tasks (mark them completed) before stopping.")
        if any(t.status == MISSING for t in self.blocking):
            lines.append("Missing tasks were removed from the task store; use kata exit --force to abandon the workflow.")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "message": self.format_message(),
            "blocking": [t.to_dict() for t in self.blocking],
            "workflow_id": self.workflow_id,
            "mode": self.mode,
            "total_tasks": self.total_tasks,
        }


def _creation_key(task: Task) -> tuple:
    numeric = int(task.id) if task.id.isdigit() else float("inf")
    return (task.created_at or "", numeric, task.id)


def evaluate(state: Optional[SessionState], task_store: TaskStore) -> ExitReport:
    if state is None:
        return ExitReport(allowed=True, reason="No session state; nothing to enforce")
    if not state.workflow_id:
        return ExitReport(allowed=True, reason="No active workflow", mode=state.current_mode)

    tasks = sorted(task_store.list(workflow_id=state.workflow_id), key=_creation_key)
    listed = {t.id for t in tasks}
    # Recorded tasks the store no longer returns were deleted, not finished.
    missing = tuple(
        TaskSummary(id=task_id, title=f"(task for phase {phase_id} not found)", status=MISSING)
        for phase_id, task_id in state.phase_tasks.items()
        if task_id not in listed
    )
    blocking = tuple(
        TaskSummary(id=t.id, title=t.title, status=t.status.value)
        for t in tasks
        if t.status is not TaskStatus.CLOSED
    ) + missing
    total = len(tasks) + len(missing)

    if missing:
        logger.warning(
            "Workflow %s: %d recorded task(s) missing from the store: %s",
            state.workflow_id, len(missing), ", ".join(t.id for t in missing),
        )
    if blocking:
        reason = f"{len(blocking)} task(s) still open"
    else:
        reason = f"All {total} tasks in workflow {state.workflow_id} are closed"

    return ExitReport(
        allowed=not blocking,
        reason=reason,
        blocking=blocking,
        workflow_id=state.workflow_id,
        mode=state.current_mode,
        total_tasks=total,
    )


def can_exit(session_id: str, session_store: SessionStore, task_store: TaskStore) -> ExitReport:
    report = evaluate(session_store.load(session_id), task_store)
    logger.info(
        "can_exit session=%s workflow=%s allowed=%s blocking=%d",
        session_id, report.workflow_id, report.allowed, len(report.blocking),
    )
    return report


def phase_progress(state: SessionState, task_store: TaskStore) -> list[dict[str, Any]]:
    """Per-phase task status for the active workflow, in phase_tasks order."""
    if not state.workflow_id or not state.phase_tasks:
        return []
    by_id = {t.id: t for t in task_store.list(workflow_id=state.workflow_id)}
    progress = []
    for phase_id, task_id in state.phase_tasks.items():
        task = by_id.get(task_id)
        progress.append({
            "phase": phase_id,
            "task_id": task_id,
            "title": task.title if task else None,
            "status": task.status.value if task else MISSING,
        })
    return progress


def next_phase(state: SessionState, task_store: TaskStore) -> Optional[str]:
    """First phase whose task is not closed, or None when all are closed."""
    for entry in phase_progress(state, task_store):
        if entry["status"] != TaskStatus.CLOSED.value:
            return entry["phase"]
    return None
