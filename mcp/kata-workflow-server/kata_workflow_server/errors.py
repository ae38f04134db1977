"""
Error taxonomy for the kata workflow engine.

ConfigError and StateCorruptionError are fatal for the current operation.
NotFoundError is recoverable at the command layer. StoreError always names
the task store operation that failed.
"""

from pathlib import Path
from typing import Optional


class KataError(Exception):
    """Base class for every error raised by kata_workflow_server."""


class ConfigError(KataError):
    """Malformed or cyclic mode/template definitions, or a bad config file."""

    def __init__(self, message: str, source: Optional[Path] = None):
        self.source = source
        if source is not None:
            message = f"{source}: {message}"
        super().__init__(message)


class NotFoundError(KataError):
    """Unknown mode name or missing session record."""


class StoreError(KataError):
    """External task store unreachable or returned malformed data."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Task store {operation} failed: {message}")


class MaterializationError(StoreError):
    """Task creation failed part-way through a workflow."""

    def __init__(
        self,
        workflow_id: str,
        succeeded: dict[str, str],
        failed_phase: str,
        cause: Exception,
    ):
        self.workflow_id = workflow_id
        self.succeeded = dict(succeeded)
        self.failed_phase = failed_phase
        self.cause = cause
        done = ", ".join(f"{p}={t}" for p, t in self.succeeded.items()) or "none"
        super().__init__(
            "create",
            f"phase '{failed_phase}' of workflow {workflow_id} could not be created "
            f"({cause}). Created before failure: {done}"
        )


class StateCorruptionError(KataError):
    """A session record exists but cannot be parsed."""

    def __init__(self, path: Path, detail: str, session_id: Optional[str] = None):
        self.path = path
        self.session_id = session_id
        reset = f"kata teardown --session {session_id}" if session_id else "kata teardown"
        super().__init__(
            f"Session state at {path} is corrupt ({detail}). "
            f"Inspect the file, or reset it with: {reset}"
        )
