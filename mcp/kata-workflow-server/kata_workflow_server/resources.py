"""
MCP Resources for the kata workflow server

Provides URI-based access to session state and mode definitions.

Resource URIs:
  - modes://list                        - Merged mode definitions
  - modes://{mode}                      - One mode with its phases
  - session://{session_id}/state        - Session record plus phase progress
  - session://{session_id}/can-exit     - Exit report for a session
  - config://effective                  - Fully merged effective config
"""

import json
from typing import Any

from .commands import workflow_can_exit, workflow_list_modes, workflow_status
from .config_tools import config_get_effective
from .errors import NotFoundError
from .modes import resolve_mode


def get_mode(name: str) -> dict[str, Any]:
    try:
        return resolve_mode(name).to_dict()
    except NotFoundError as e:
        return {"error": str(e)}


def _session_part(uri: str, suffix: str) -> str:
    return uri[len("session://"):-len(suffix)]


def resolve_resource(uri: str) -> str:
    if uri == "modes://list":
        return json.dumps(workflow_list_modes(), indent=2)

    if uri == "config://effective":
        return json.dumps(config_get_effective(), indent=2)

    if uri.startswith("modes://"):
        return json.dumps(get_mode(uri[len("modes://"):]), indent=2)

    if uri.startswith("session://") and uri.endswith("/state"):
        return json.dumps(workflow_status(_session_part(uri, "/state")), indent=2)

    if uri.startswith("session://") and uri.endswith("/can-exit"):
        return json.dumps(workflow_can_exit(_session_part(uri, "/can-exit")), indent=2)

    return json.dumps({"error": f"Unknown resource URI: {uri}"})


RESOURCE_DESCRIPTIONS = {
    "modes://list": {
        "name": "Available modes",
        "description": "Built-in, user and project modes after merging",
        "mimeType": "application/json"
    },
    "config://effective": {
        "name": "Effective configuration",
        "description": "Fully merged workflow configuration from all sources",
        "mimeType": "application/json"
    }
}


RESOURCE_TEMPLATES = {
    "session://{session_id}/state": {
        "name": "Session state",
        "description": "Mode, phase, workflow and task progress for a session",
        "mimeType": "application/json"
    },
    "session://{session_id}/can-exit": {
        "name": "Session exit report",
        "description": "Whether the session may stop, and which tasks block it",
        "mimeType": "application/json"
    },
    "modes://{mode}": {
        "name": "Mode definition",
        "description": "One mode with its phases and task titles",
        "mimeType": "application/json"
    }
}
