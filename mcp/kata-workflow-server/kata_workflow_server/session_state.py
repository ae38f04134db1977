"""
Session State Store

One JSON record per session id, at <sessions_dir>/<session_id>/state.json.
Every hook and CLI call is its own short-lived process, so nothing is cached
between calls: each save() re-reads the record, applies the caller's
mutation and writes the result to a temp file that is renamed into place.
Readers therefore see either the old or the new record, never a torn one,
and a failed write leaves the old record untouched.

Concurrent saves for the same session are serialized with a lock file next
to the record. That narrows, but does not remove, the last-writer-wins
window between processes that load, decide, and save separately.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock

from .errors import StateCorruptionError


logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
EVENTS_FILENAME = "events.jsonl"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def validate_session_id(session_id: Optional[str]) -> str:
    if not session_id or not isinstance(session_id, str):
        raise ValueError("A session id is required")
    session_id = session_id.strip()
    if not _SESSION_ID_RE.match(session_id) or ".." in session_id:
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


@dataclass(frozen=True)
class ModeHistoryEntry:
    mode: str
    entered_at: str
    exited_at: Optional[str] = None
    workflow_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mode": self.mode, "enteredAt": self.entered_at}
        if self.exited_at is not None:
            data["exitedAt"] = self.exited_at
        if self.workflow_id is not None:
            data["workflowId"] = self.workflow_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModeHistoryEntry":
        return cls(
            mode=data["mode"],
            entered_at=data["enteredAt"],
            exited_at=data.get("exitedAt"),
            workflow_id=data.get("workflowId"),
        )


@dataclass(frozen=True)
class SessionState:
    """Persisted record for one session.

    Frozen: callers derive a new state with dataclasses.replace() (or the
    helpers below) inside a save() mutation.
    """

    session_id: str
    current_mode: Optional[str] = None
    current_phase: Optional[str] = None
    workflow_id: Optional[str] = None
    mode_history: tuple[ModeHistoryEntry, ...] = field(default_factory=tuple)
    phase_tasks: dict[str, str] = field(default_factory=dict)
    template_path: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.mode_history, tuple):
            object.__setattr__(self, "mode_history", tuple(self.mode_history))
        object.__setattr__(self, "phase_tasks", dict(self.phase_tasks))

    @property
    def open_history_entry(self) -> Optional[ModeHistoryEntry]:
        if self.mode_history and self.mode_history[-1].is_open:
            return self.mode_history[-1]
        return None

    def close_history(self, when: Optional[str] = None) -> "SessionState":
        """Close the open history entry, if any. Entries are never removed."""
        entry = self.open_history_entry
        if entry is None:
            return self
        closed = replace(entry, exited_at=when or utc_now())
        return replace(self, mode_history=self.mode_history[:-1] + (closed,))

    def append_history(self, mode: str, workflow_id: Optional[str], when: Optional[str] = None) -> "SessionState":
        entry = ModeHistoryEntry(mode=mode, entered_at=when or utc_now(), workflow_id=workflow_id)
        return replace(self, mode_history=self.mode_history + (entry,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "currentMode": self.current_mode,
            "currentPhase": self.current_phase,
            "workflowId": self.workflow_id,
            "modeHistory": [e.to_dict() for e in self.mode_history],
            "phaseTasks": dict(self.phase_tasks),
            "templatePath": self.template_path,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionState":
        phase_tasks = data.get("phaseTasks") or {}
        if not isinstance(phase_tasks, dict):
            raise TypeError("phaseTasks is not an object")
        return cls(
            session_id=data["sessionId"],
            current_mode=data.get("currentMode"),
            current_phase=data.get("currentPhase"),
            workflow_id=data.get("workflowId"),
            mode_history=tuple(ModeHistoryEntry.from_dict(e) for e in data.get("modeHistory") or []),
            phase_tasks=phase_tasks,
            template_path=data.get("templatePath"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


Mutation = Callable[[SessionState], SessionState]


class SessionStore(ABC):
    """Storage contract for session records.

    Callers never hold a state object across invocations; they load a copy
    or pass a mutation to save().
    """

    @abstractmethod
    def load(self, session_id: str) -> Optional[SessionState]:
        """Return the record, or None if the session has none yet."""

    @abstractmethod
    def save(self, session_id: str, mutation: Mutation) -> SessionState:
        """Apply mutation to the current record (or a fresh one) and persist it."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove the record. Returns False when there was nothing to remove."""


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    """Write JSON payload to path atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=".tmp_state_",
        suffix=".json",
        text=True,
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try:
            temp_path.unlink()
        except OSError:
            pass
        raise


class FileSessionStore(SessionStore):

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)

    def session_dir(self, session_id: str) -> Path:
        return self.sessions_dir / validate_session_id(session_id)

    def state_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / STATE_FILENAME

    def _lock(self, session_id: str) -> FileLock:
        session_dir = self.session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        return FileLock(str(session_dir / f"{STATE_FILENAME}.lock"), timeout=10)

    def _read(self, session_id: str) -> Optional[SessionState]:
        path = self.state_path(session_id)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise StateCorruptionError(path, f"invalid JSON: {e}", session_id=session_id) from e
        except OSError as e:
            raise StateCorruptionError(path, f"unreadable: {e}", session_id=session_id) from e

        if not isinstance(data, dict):
            raise StateCorruptionError(path, "record is not a JSON object", session_id=session_id)
        try:
            state = SessionState.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateCorruptionError(path, f"missing or malformed field {e}", session_id=session_id) from e
        if state.session_id != session_id:
            raise StateCorruptionError(
                path, f"record belongs to session {state.session_id!r}", session_id=session_id
            )
        return state

    def load(self, session_id: str) -> Optional[SessionState]:
        return self._read(validate_session_id(session_id))

    def save(self, session_id: str, mutation: Mutation) -> SessionState:
        session_id = validate_session_id(session_id)
        with self._lock(session_id):
            old_state = self._read(session_id)
            now = utc_now()
            base = old_state or SessionState(session_id=session_id, created_at=now)
            new_state = mutation(base)
            if new_state.session_id != session_id:
                raise ValueError("A mutation may not change the session id")
            new_state = replace(new_state, updated_at=now, created_at=new_state.created_at or now)
            _atomic_write_json(self.state_path(session_id), new_state.to_dict())

        self._log_state_changes(session_id, old_state, new_state)
        return new_state

    def delete(self, session_id: str) -> bool:
        session_dir = self.session_dir(session_id)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        return True

    def _log_state_changes(
        self,
        session_id: str,
        old_state: Optional[SessionState],
        new_state: SessionState,
    ) -> None:
        """Append a state_change entry to events.jsonl when tracked fields change."""
        changes: dict[str, Any] = {}
        for attr, key in (
            ("current_mode", "currentMode"),
            ("current_phase", "currentPhase"),
            ("workflow_id", "workflowId"),
        ):
            before = getattr(old_state, attr) if old_state else None
            after = getattr(new_state, attr)
            if before != after:
                changes[key] = {"from": before, "to": after}

        if not changes:
            return

        entry = {
            "timestamp": new_state.updated_at,
            "type": "state_change",
            "sessionId": session_id,
            "changes": changes,
        }
        events_file = self.session_dir(session_id) / EVENTS_FILENAME
        try:
            with open(events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError:
            logger.warning("Could not append state change to %s", events_file, exc_info=True)
