"""
Task store interface and the bundled file-backed implementation.

The task store is an external collaborator: kata creates tasks in bulk when
a mode is entered and otherwise only reads them. The agent (or the
`kata task` command) moves them through open -> in-progress -> closed.

FileTaskStore lays tasks out like the agent's native task list, one JSON
document per task:

    <root>/<session_id>/<n>.json

Native status names (pending, in_progress, completed) are accepted on read.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock, Timeout

from .errors import NotFoundError, StoreError
from .session_state import utc_now, validate_session_id


logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    CLOSED = "closed"


STATUS_ALIASES = {
    "open": TaskStatus.OPEN,
    "pending": TaskStatus.OPEN,
    "in-progress": TaskStatus.IN_PROGRESS,
    "in_progress": TaskStatus.IN_PROGRESS,
    "closed": TaskStatus.CLOSED,
    "completed": TaskStatus.CLOSED,
    "done": TaskStatus.CLOSED,
}


def parse_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    if isinstance(value, str):
        status = STATUS_ALIASES.get(value.strip().lower())
        if status is not None:
            return status
    raise ValueError(f"Unknown task status: {value!r}")


def workflow_tag(data: dict[str, Any]) -> Optional[str]:
    """Workflow id of a raw task document, from the top level or its metadata."""
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError("metadata is not a JSON object")
    return data.get("workflowId") or metadata.get("workflowId")


@dataclass(frozen=True)
class Task:
    id: str
    workflow_id: str
    title: str
    status: TaskStatus = TaskStatus.OPEN
    depends_on: tuple[str, ...] = ()
    description: Optional[str] = None
    created_at: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "dependsOn": list(self.depends_on),
            "createdAt": self.created_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        workflow_id = workflow_tag(data)
        if not workflow_id:
            raise ValueError("task has no workflow id")
        return cls(
            id=str(data["id"]),
            workflow_id=workflow_id,
            title=data.get("title") or data.get("subject") or "",
            status=parse_status(data.get("status", "open")),
            depends_on=tuple(str(t) for t in (data.get("dependsOn") or data.get("blockedBy") or [])),
            description=data.get("description"),
            created_at=data.get("createdAt"),
            metadata=data.get("metadata") or {},
        )


class TaskStore(ABC):
    """Operations kata needs from a task tracker."""

    @abstractmethod
    def create(
        self,
        title: str,
        *,
        workflow_id: str,
        depends_on: tuple[str, ...] | list[str] = (),
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Create an open task and return its id."""

    @abstractmethod
    def update(
        self,
        task_id: str,
        *,
        status: Optional[TaskStatus] = None,
        title: Optional[str] = None,
    ) -> Task:
        """Change a task's status and/or title."""

    @abstractmethod
    def get(self, task_id: str) -> Task:
        """Return one task; NotFoundError when it does not exist."""

    @abstractmethod
    def list(self, *, workflow_id: str) -> list[Task]:
        """All tasks tagged with workflow_id, in creation order."""

    def status(self, task_id: str) -> TaskStatus:
        return self.get(task_id).status


class FileTaskStore(TaskStore):

    def __init__(self, root: Path, session_id: str):
        self.session_id = validate_session_id(session_id)
        self.task_dir = Path(root).expanduser() / self.session_id

    def _task_path(self, task_id: str) -> Path:
        if not task_id.isdigit():
            raise NotFoundError(f"Task {task_id} not found")
        return self.task_dir / f"{task_id}.json"

    def _lock(self) -> FileLock:
        self.task_dir.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.task_dir / ".lock"), timeout=10)

    def _read_raw(self, path: Path, operation: str) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise
        except (OSError, ValueError) as e:
            raise StoreError(operation, f"{path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(operation, f"{path}: task document is not a JSON object")
        return data

    def _read(self, path: Path, operation: str) -> Task:
        data = self._read_raw(path, operation)
        try:
            return Task.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StoreError(operation, f"{path}: {e}") from e

    def _write(self, path: Path, task: Task) -> None:
        fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp_task_", suffix=".json", text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(task.to_dict(), handle, indent=2)
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise

    def _task_files(self) -> list[Path]:
        if not self.task_dir.exists():
            return []
        files = [p for p in self.task_dir.glob("*.json") if p.stem.isdigit()]
        return sorted(files, key=lambda p: int(p.stem))

    def create(
        self,
        title: str,
        *,
        workflow_id: str,
        depends_on: tuple[str, ...] | list[str] = (),
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        try:
            with self._lock():
                existing = [int(p.stem) for p in self._task_files()]
                task_id = str(max(existing, default=0) + 1)
                task = Task(
                    id=task_id,
                    workflow_id=workflow_id,
                    title=title,
                    depends_on=tuple(depends_on),
                    description=description,
                    created_at=utc_now(),
                    metadata=dict(metadata or {}),
                )
                self._write(self._task_path(task_id), task)
        except (OSError, Timeout) as e:
            raise StoreError("create", str(e)) from e

        logger.debug("Created task %s (%s) in %s", task_id, title, self.task_dir)
        return task_id

    def update(
        self,
        task_id: str,
        *,
        status: Optional[TaskStatus] = None,
        title: Optional[str] = None,
    ) -> Task:
        path = self._task_path(task_id)
        try:
            with self._lock():
                try:
                    task = self._read(path, "update")
                except FileNotFoundError:
                    raise NotFoundError(f"Task {task_id} not found")
                changes: dict[str, Any] = {}
                if status is not None:
                    changes["status"] = parse_status(status)
                if title is not None:
                    changes["title"] = title
                task = replace(task, **changes)
                self._write(path, task)
        except (OSError, Timeout) as e:
            raise StoreError("update", str(e)) from e
        return task

    def get(self, task_id: str) -> Task:
        try:
            return self._read(self._task_path(task_id), "get")
        except FileNotFoundError:
            raise NotFoundError(f"Task {task_id} not found")

    def list(self, *, workflow_id: str) -> list[Task]:
        tasks = []
        for path in self._task_files():
            try:
                data = self._read_raw(path, "list")
            except FileNotFoundError:
                continue
            try:
                tagged = workflow_tag(data)
                # Tasks the agent created itself carry no workflow id and are not ours.
                if tagged != workflow_id:
                    continue
                tasks.append(Task.from_dict(data))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise StoreError("list", f"{path}: {e}") from e
        return tasks
