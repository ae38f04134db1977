"""
Workflow commands shared by the CLI, the hook dispatcher and the MCP server.

Each function takes the session id explicitly and returns a JSON-ready dict
with a "success" key. Recoverable conditions (unknown mode, no session yet)
come back as {"success": False, "error": ...}. ConfigError,
StateCorruptionError and StoreError propagate to the entry point, which
turns them into a non-zero exit or a block decision.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from .config_tools import config_get_effective, resolve_config_path
from .errors import MaterializationError, NotFoundError
from .exit_evaluator import evaluate, next_phase, phase_progress
from .modes import ModeDefinition, list_modes, resolve_mode
from .session_state import FileSessionStore, SessionState, SessionStore, validate_session_id
from .task_factory import generate_workflow_id, materialize
from .task_store import FileTaskStore, TaskStatus, TaskStore, parse_status


logger = logging.getLogger(__name__)


def _effective(project_dir: Optional[str]) -> tuple[dict[str, Any], Path]:
    effective = config_get_effective(project_dir)
    return effective["config"], Path(effective["project_dir"])


def get_session_store(project_dir: Optional[str] = None) -> FileSessionStore:
    config, project = _effective(project_dir)
    return FileSessionStore(resolve_config_path(config["sessions_dir"], project))


def get_task_store(session_id: str, project_dir: Optional[str] = None) -> FileTaskStore:
    config, project = _effective(project_dir)
    return FileTaskStore(resolve_config_path(config["task_store"]["path"], project), session_id)


def _stores(
    session_id: str,
    project_dir: Optional[str],
    session_store: Optional[SessionStore],
    task_store: Optional[TaskStore],
) -> tuple[SessionStore, TaskStore]:
    return (
        session_store or get_session_store(project_dir),
        task_store or get_task_store(session_id, project_dir),
    )


def workflow_init(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
) -> dict[str, Any]:
    session_id = validate_session_id(session_id)
    store = session_store or get_session_store(project_dir)
    existed = store.load(session_id) is not None
    state = store.save(session_id, lambda s: s)
    return {
        "success": True,
        "created": not existed,
        "state": state.to_dict(),
        "message": "Session already initialized" if existed else f"Initialized session {session_id}",
    }


def workflow_enter(
    session_id: str,
    mode: Optional[str] = None,
    project_dir: Optional[str] = None,
    template_path: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
    force: bool = False,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    """Enter a mode: create its workflow tasks and record the transition."""
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)

    current = sessions.load(session_id)

    try:
        definition = resolve_mode(
            mode,
            project_dir=project_dir,
            template_path=Path(template_path) if template_path else None,
        )
    except NotFoundError as e:
        return {"success": False, "error": str(e)}

    if (
        current is not None
        and current.current_mode == definition.id
        and current.workflow_id
        and not force
    ):
        return {
            "success": True,
            "already_active": True,
            "mode": definition.id,
            "workflow_id": current.workflow_id,
            "current_phase": current.current_phase,
            "message": f"Already in {definition.id} mode (workflow {current.workflow_id})",
        }

    config, _ = _effective(project_dir)
    previous_ids = [e.workflow_id for e in current.mode_history] if current else []
    workflow_id = generate_workflow_id(
        definition,
        existing_ids=[w for w in previous_ids if w],
        random_suffix=bool(config["workflow_id"].get("random_suffix", True)),
    )

    try:
        result = materialize(definition, tasks, workflow_id, context=context)
    except MaterializationError as e:
        return {
            "success": False,
            "error": str(e),
            "workflow_id": e.workflow_id,
            "created_task_ids": e.succeeded,
            "failed_phase": e.failed_phase,
        }

    def apply(state: SessionState) -> SessionState:
        state = state.close_history()
        state = replace(
            state,
            current_mode=definition.id,
            current_phase=result.first_phase,
            workflow_id=result.workflow_id,
            phase_tasks=result.created_task_ids,
            template_path=str(definition.source) if template_path else None,
        )
        return state.append_history(definition.id, result.workflow_id)

    state = sessions.save(session_id, apply)
    previous = current.current_mode if current else None
    logger.info(
        "Session %s entered %s (workflow %s, %d tasks)",
        session_id, definition.id, result.workflow_id, len(result.created_task_ids),
    )

    return {
        "success": True,
        "mode": definition.id,
        "mode_name": definition.name,
        "previous_mode": previous,
        "workflow_id": result.workflow_id,
        "current_phase": state.current_phase,
        "tasks": [
            {"phase": phase_id, "task_id": task_id}
            for phase_id, task_id in result.created_task_ids.items()
        ],
        "instructions": definition.instructions,
        "message": f"Entered {definition.name} mode ({result.workflow_id})",
    }


def workflow_status(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)
    state = sessions.load(session_id)
    if state is None:
        return {
            "success": True,
            "session_id": session_id,
            "initialized": False,
            "current_mode": None,
            "current_phase": None,
            "workflow_id": None,
        }

    progress = phase_progress(state, tasks)
    return {
        "success": True,
        "session_id": session_id,
        "initialized": True,
        "current_mode": state.current_mode,
        "current_phase": state.current_phase,
        "next_phase": next_phase(state, tasks) if progress else None,
        "workflow_id": state.workflow_id,
        "phases": progress,
        "state": state.to_dict(),
    }


def workflow_can_exit(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)
    report = evaluate(sessions.load(session_id), tasks)
    logger.info("can-exit session=%s allowed=%s", session_id, report.allowed)
    result = report.to_dict()
    result["success"] = True
    return result


def workflow_exit(
    session_id: str,
    project_dir: Optional[str] = None,
    force: bool = False,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    """Leave the current mode. Refused while workflow tasks are open unless forced."""
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)
    state = sessions.load(session_id)
    if state is None or not state.current_mode:
        return {"success": False, "error": f"Session {session_id} is not in a mode"}

    report = evaluate(state, tasks)
    if not report.allowed and not force:
        return {
            "success": False,
            "error": report.format_message(),
            "blocking": [t.to_dict() for t in report.blocking],
        }

    left = state.current_mode

    def apply(s: SessionState) -> SessionState:
        s = s.close_history()
        return replace(
            s,
            current_mode=None,
            current_phase=None,
            workflow_id=None,
            phase_tasks={},
            template_path=None,
        )

    sessions.save(session_id, apply)
    if not report.allowed:
        logger.warning("Session %s forced out of %s with %d open tasks", session_id, left, len(report.blocking))
    return {
        "success": True,
        "exited_mode": left,
        "forced": not report.allowed,
        "message": f"Exited {left} mode",
    }


def workflow_teardown(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
) -> dict[str, Any]:
    """Remove the session record. Tasks in the task store are left alone."""
    session_id = validate_session_id(session_id)
    store = session_store or get_session_store(project_dir)
    removed = store.delete(session_id)
    return {
        "success": True,
        "removed": removed,
        "message": f"Removed session {session_id}" if removed else f"No state for session {session_id}",
    }


def workflow_update_task(
    session_id: str,
    task_id: str,
    status: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    """Set a task's status and move current_phase to the next unfinished phase."""
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)
    try:
        new_status = parse_status(status)
    except ValueError as e:
        return {"success": False, "error": str(e)}
    try:
        task = tasks.update(task_id, status=new_status)
    except NotFoundError as e:
        return {"success": False, "error": str(e)}

    state = sessions.load(session_id)
    if state is not None and task_id in state.phase_tasks.values():
        upcoming = next_phase(state, tasks)
        if upcoming != state.current_phase:
            state = sessions.save(session_id, lambda s: replace(s, current_phase=upcoming))

    return {
        "success": True,
        "task": task.to_dict(),
        "current_phase": state.current_phase if state else None,
    }


def workflow_list_modes(project_dir: Optional[str] = None) -> dict[str, Any]:
    return {"success": True, "modes": list_modes(project_dir)}


def _format_mode_list(project_dir: Optional[str]) -> str:
    lines = ["Available modes (enter one with: kata enter <mode> --session <id>):"]
    for mode in list_modes(project_dir):
        aliases = f" (aliases: {', '.join(mode['aliases'])})" if mode["aliases"] else ""
        lines.append(f"  {mode['id']:<16} {mode['description']}{aliases}")
    return "\n".join(lines)


def _format_active_context(state: SessionState, definition: Optional[ModeDefinition], tasks: TaskStore) -> str:
    report = evaluate(state, tasks)
    lines = [
        f"kata: session is in {state.current_mode} mode, workflow {state.workflow_id}, "
        f"current phase {state.current_phase or '-'}.",
    ]
    if report.blocking:
        lines.append("Open tasks:")
        for t in report.blocking:
            lines.append(f"  - [{t.status}] #{t.id} {t.title}")
    else:
        lines.append("All workflow tasks are closed; the session may stop.")
    if definition is not None and definition.instructions.strip():
        lines.append("")
        lines.append(definition.instructions.strip())
    return "\n".join(lines)


def workflow_prime(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
    task_store: Optional[TaskStore] = None,
) -> dict[str, Any]:
    """Context text for the agent: active mode and open tasks, or how to start."""
    session_id = validate_session_id(session_id)
    sessions, tasks = _stores(session_id, project_dir, session_store, task_store)
    state = sessions.load(session_id)

    if state is None or not state.current_mode:
        return {"success": True, "active": False, "context": _format_mode_list(project_dir)}

    try:
        definition = resolve_mode(
            state.current_mode,
            project_dir=project_dir,
            template_path=Path(state.template_path) if state.template_path else None,
        )
    except NotFoundError:
        logger.warning("Mode %s of session %s is no longer defined", state.current_mode, session_id)
        definition = None

    return {
        "success": True,
        "active": True,
        "mode": state.current_mode,
        "context": _format_active_context(state, definition, tasks),
    }


def workflow_reminder(
    session_id: str,
    project_dir: Optional[str] = None,
    session_store: Optional[SessionStore] = None,
) -> Optional[str]:
    """One-line reminder of the active mode, or None outside a mode."""
    store = session_store or get_session_store(project_dir)
    state = store.load(validate_session_id(session_id))
    if state is None or not state.current_mode:
        return None
    return (
        f"[kata] {state.current_mode} mode, workflow {state.workflow_id}, "
        f"phase {state.current_phase or '-'}. Keep the pre-created tasks up to date."
    )


def task_status_names() -> list[str]:
    return [s.value for s in TaskStatus]
