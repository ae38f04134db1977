#!/usr/bin/env python3
"""
Kata Workflow MCP Server

Exposes the workflow commands (enter a mode, check exit readiness, update
tasks, ...) as MCP tools, and session state and mode definitions as
resources. Every tool takes the session id as an argument; the server never
guesses which session it is serving.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    Resource,
    ResourceTemplate,
)

from .batteries import scaffold_batteries
from .commands import (
    task_status_names,
    workflow_can_exit,
    workflow_enter,
    workflow_exit,
    workflow_init,
    workflow_list_modes,
    workflow_prime,
    workflow_status,
    workflow_teardown,
    workflow_update_task,
)
from .config_tools import configure_logging, get_log_level
from .resources import RESOURCE_DESCRIPTIONS, RESOURCE_TEMPLATES, resolve_resource


logger = logging.getLogger(__name__)

server = Server("kata-workflow-server")


SESSION_ID = {
    "type": "string",
    "description": "Session identifier of the agent session"
}

PROJECT_DIR = {
    "type": "string",
    "description": "Project root. Defaults to CLAUDE_PROJECT_DIR or the nearest directory containing .claude/"
}


TOOLS = [
    Tool(
        name="workflow_init",
        description="Create the session record if it does not exist yet.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": SESSION_ID, "project_dir": PROJECT_DIR},
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_enter",
        description="Enter a mode: creates one task per phase, wired by dependencies, and records the mode in session state.",
        inputSchema={
            "type": "object",
            "properties": {
                "session_id": SESSION_ID,
                "mode": {
                    "type": "string",
                    "description": "Mode id or alias (e.g., 'task', 'planning')"
                },
                "template_path": {
                    "type": "string",
                    "description": "Ad-hoc template file used instead of a named mode"
                },
                "context": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Values for {placeholders} in task titles"
                },
                "force": {
                    "type": "boolean",
                    "description": "Start a fresh workflow even if the mode is already active"
                },
                "project_dir": PROJECT_DIR
            },
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_status",
        description="Current mode, phase, workflow id and per-phase task status for a session.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": SESSION_ID, "project_dir": PROJECT_DIR},
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_can_exit",
        description="Whether the session may stop. Lists every task of the active workflow that is not closed.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": SESSION_ID, "project_dir": PROJECT_DIR},
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_exit",
        description="Leave the current mode. Refused while workflow tasks are open unless force is set.",
        inputSchema={
            "type": "object",
            "properties": {
                "session_id": SESSION_ID,
                "force": {
                    "type": "boolean",
                    "description": "Leave the mode even with open tasks"
                },
                "project_dir": PROJECT_DIR
            },
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_teardown",
        description="Delete the session record. Use to reset a corrupt state file.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": SESSION_ID, "project_dir": PROJECT_DIR},
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_update_task",
        description="Set the status of a workflow task and advance the current phase.",
        inputSchema={
            "type": "object",
            "properties": {
                "session_id": SESSION_ID,
                "task_id": {
                    "type": "string",
                    "description": "Task id as returned by workflow_enter"
                },
                "status": {
                    "type": "string",
                    "description": "New status",
                    "enum": task_status_names()
                },
                "project_dir": PROJECT_DIR
            },
            "required": ["session_id", "task_id", "status"]
        }
    ),
    Tool(
        name="workflow_prime",
        description="Context text for the session: active mode instructions and open tasks, or the available modes.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": SESSION_ID, "project_dir": PROJECT_DIR},
            "required": ["session_id"]
        }
    ),
    Tool(
        name="workflow_list_modes",
        description="List the merged mode definitions (built-in, user, project).",
        inputSchema={
            "type": "object",
            "properties": {"project_dir": PROJECT_DIR},
            "required": []
        }
    ),
    Tool(
        name="workflow_batteries",
        description="Copy the built-in modes.yaml and templates into the project's .claude/workflows/.",
        inputSchema={
            "type": "object",
            "properties": {
                "update": {
                    "type": "boolean",
                    "description": "Overwrite files that already exist"
                },
                "project_dir": PROJECT_DIR
            },
            "required": []
        }
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


def call_tool_sync(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    project_dir = arguments.get("project_dir")
    if name == "workflow_init":
        return workflow_init(arguments["session_id"], project_dir=project_dir)
    elif name == "workflow_enter":
        return workflow_enter(
            arguments["session_id"],
            mode=arguments.get("mode"),
            project_dir=project_dir,
            template_path=arguments.get("template_path"),
            context=arguments.get("context"),
            force=arguments.get("force", False)
        )
    elif name == "workflow_status":
        return workflow_status(arguments["session_id"], project_dir=project_dir)
    elif name == "workflow_can_exit":
        return workflow_can_exit(arguments["session_id"], project_dir=project_dir)
    elif name == "workflow_exit":
        return workflow_exit(
            arguments["session_id"],
            project_dir=project_dir,
            force=arguments.get("force", False)
        )
    elif name == "workflow_teardown":
        return workflow_teardown(arguments["session_id"], project_dir=project_dir)
    elif name == "workflow_update_task":
        return workflow_update_task(
            arguments["session_id"],
            arguments["task_id"],
            arguments["status"],
            project_dir=project_dir
        )
    elif name == "workflow_prime":
        return workflow_prime(arguments["session_id"], project_dir=project_dir)
    elif name == "workflow_list_modes":
        return workflow_list_modes(project_dir=project_dir)
    elif name == "workflow_batteries":
        return scaffold_batteries(project_dir=project_dir, update=arguments.get("update", False))
    return {"error": f"Unknown tool: {name}"}


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    try:
        result = call_tool_sync(name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    except Exception as e:
        logger.exception(f"Error executing tool {name}")
        return [TextContent(
            type="text",
            text=json.dumps({"success": False, "error": str(e), "tool": name}, indent=2)
        )]


@server.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(uri=uri, **info)
        for uri, info in RESOURCE_DESCRIPTIONS.items()
    ]


@server.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(uriTemplate=uri, **info)
        for uri, info in RESOURCE_TEMPLATES.items()
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    try:
        return resolve_resource(str(uri))
    except Exception as e:
        logger.exception(f"Error reading resource {uri}")
        return json.dumps({"error": str(e), "uri": str(uri)})


async def async_main():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main():
    """Entry point for the MCP server."""
    configure_logging(get_log_level())
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
