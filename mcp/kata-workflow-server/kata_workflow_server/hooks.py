"""
Hook Dispatcher

Entry point for the agent harness hooks. Reads one JSON event from stdin,
routes it by hook_event_name and prints a decision:

    {"decision": "block", "reason": "..."}                  exit code 2
    {"decision": "allow", "hookSpecificOutput": {...}}      exit code 0

The session id comes from the payload only. Events this module does not
handle are allowed through untouched.

Usage in .claude/settings.json:
{
  "hooks": {
    "SessionStart":     [{"hooks": [{"type": "command", "command": "kata-hook"}]}],
    "UserPromptSubmit": [{"hooks": [{"type": "command", "command": "kata-hook"}]}],
    "Stop":             [{"hooks": [{"type": "command", "command": "kata-hook"}]}]
  }
}
"""

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Optional

from .commands import (
    get_session_store,
    get_task_store,
    workflow_init,
    workflow_prime,
    workflow_reminder,
)
from .config_tools import config_get_effective, configure_logging, get_log_level
from .errors import ConfigError, StateCorruptionError, StoreError
from .exit_evaluator import can_exit
from .session_state import validate_session_id


logger = logging.getLogger(__name__)

ALLOW = "allow"
BLOCK = "block"

STOP_EVENTS = ("Stop", "SubagentStop")


@dataclass(frozen=True)
class HookDecision:
    decision: str = ALLOW
    message: Optional[str] = None
    context: Optional[str] = None
    event: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.decision == BLOCK

    def to_dict(self) -> dict[str, Any]:
        output: dict[str, Any] = {"decision": self.decision}
        if self.message:
            output["reason"] = self.message
        if self.context and self.event:
            output["hookSpecificOutput"] = {
                "hookEventName": self.event,
                "additionalContext": self.context,
            }
        return output


def _hook_settings(project_dir: Optional[str]) -> dict[str, Any]:
    return config_get_effective(project_dir)["config"].get("hooks") or {}


def _on_session_start(session_id: str, project_dir: Optional[str]) -> HookDecision:
    workflow_init(session_id, project_dir=project_dir)
    primed = workflow_prime(session_id, project_dir=project_dir)
    return HookDecision(context=primed["context"], event="SessionStart")


def _on_prompt(session_id: str, project_dir: Optional[str]) -> HookDecision:
    if not _hook_settings(project_dir).get("prompt_reminder", True):
        return HookDecision()
    reminder = workflow_reminder(session_id, project_dir=project_dir)
    if reminder is None:
        return HookDecision()
    return HookDecision(context=reminder, event="UserPromptSubmit")


def _on_stop(session_id: str, event: str, project_dir: Optional[str]) -> HookDecision:
    if not _hook_settings(project_dir).get("stop_enforcement", True):
        return HookDecision()
    report = can_exit(
        session_id,
        session_store=get_session_store(project_dir),
        task_store=get_task_store(session_id, project_dir),
    )
    if report.allowed:
        return HookDecision(event=event)
    return HookDecision(decision=BLOCK, message=report.format_message(), event=event)


def dispatch(payload: dict[str, Any], project_dir: Optional[str] = None) -> HookDecision:
    event = payload.get("hook_event_name") or payload.get("event")
    session_id = payload.get("session_id")

    if not session_id:
        logger.info("Hook %s without a session id, passing through", event)
        return HookDecision(event=event)

    try:
        session_id = validate_session_id(session_id)
    except ValueError as e:
        logger.warning("Hook %s ignored: %s", event, e)
        return HookDecision(event=event)

    try:
        if event == "SessionStart":
            decision = _on_session_start(session_id, project_dir)
        elif event == "UserPromptSubmit":
            decision = _on_prompt(session_id, project_dir)
        elif event in STOP_EVENTS:
            decision = _on_stop(session_id, event, project_dir)
        else:
            return HookDecision(event=event)
    except (ConfigError, StateCorruptionError, StoreError) as e:
        logger.error("Hook %s for session %s failed: %s", event, session_id, e)
        return HookDecision(decision=BLOCK, message=f"kata: {e}", event=event)

    logger.info("Hook %s session=%s decision=%s", event, session_id, decision.decision)
    return decision


def main() -> None:
    configure_logging(get_log_level())

    raw = sys.stdin.read()
    try:
        payload = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        logger.warning("Hook input is not JSON: %s", e)
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    decision = dispatch(payload)
    print(json.dumps(decision.to_dict()))
    sys.exit(2 if decision.blocked else 0)


if __name__ == "__main__":
    main()
