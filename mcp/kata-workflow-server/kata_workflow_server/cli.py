"""
kata command line.

Usage:
    kata enter task --session S1 [--template path.md] [--context issue=42]
    kata status --session S1
    kata can-exit --session S1          # exit 0 when allowed, 1 when blocked
    kata exit --session S1 [--force]
    kata task 3 --status closed --session S1
    kata init | teardown | prime --session S1
    kata modes
    kata batteries [--update]

Exit codes: 0 ok, 1 refused (unknown mode, blocked exit, ...), 2 error
(corrupt state, broken mode definitions, task store or file system failure).
"""

import argparse
import json
import logging
import sys
from typing import Any, Optional

from filelock import Timeout

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
from .errors import KataError


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REFUSED = 1
EXIT_ERROR = 2


def _output(result: dict[str, Any], args: argparse.Namespace, text: Optional[str] = None) -> int:
    if args.json:
        print(json.dumps(result, indent=2))
    elif not result.get("success", True):
        print(result.get("error", "failed"), file=sys.stderr)
    else:
        print(text if text is not None else result.get("message", ""))
    return EXIT_OK if result.get("success", True) else EXIT_REFUSED


def _parse_context(pairs: list[str]) -> dict[str, str]:
    context = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"--context expects key=value, got {pair!r}")
        context[key.strip()] = value
    return context


def cmd_enter(args: argparse.Namespace) -> int:
    if not args.mode and not args.template:
        print("enter needs a mode name or --template", file=sys.stderr)
        return EXIT_REFUSED
    result = workflow_enter(
        args.session,
        mode=args.mode,
        project_dir=args.project_dir,
        template_path=args.template,
        context=_parse_context(args.context),
        force=args.force,
    )
    text = None
    if result.get("success") and not result.get("already_active"):
        lines = [result["message"]]
        lines.extend(f"  {t['phase']}: task #{t['task_id']}" for t in result["tasks"])
        text = "\n".join(lines)
    return _output(result, args, text)


def cmd_status(args: argparse.Namespace) -> int:
    result = workflow_status(args.session, project_dir=args.project_dir)
    if not result["initialized"]:
        text = f"Session {args.session}: no state (run kata init or kata enter)"
    elif not result["current_mode"]:
        text = f"Session {args.session}: not in a mode"
    else:
        lines = [
            f"Session {args.session}: {result['current_mode']} mode, "
            f"workflow {result['workflow_id']}, phase {result['current_phase'] or '-'}",
        ]
        for entry in result["phases"]:
            lines.append(f"  [{entry['status']}] {entry['phase']} #{entry['task_id']} {entry['title'] or ''}".rstrip())
        text = "\n".join(lines)
    return _output(result, args, text)


def cmd_can_exit(args: argparse.Namespace) -> int:
    result = workflow_can_exit(args.session, project_dir=args.project_dir)
    _output(result, args, result["message"])
    return EXIT_OK if result["allowed"] else EXIT_REFUSED


def cmd_exit(args: argparse.Namespace) -> int:
    return _output(workflow_exit(args.session, project_dir=args.project_dir, force=args.force), args)


def cmd_init(args: argparse.Namespace) -> int:
    return _output(workflow_init(args.session, project_dir=args.project_dir), args)


def cmd_teardown(args: argparse.Namespace) -> int:
    return _output(workflow_teardown(args.session, project_dir=args.project_dir), args)


def cmd_prime(args: argparse.Namespace) -> int:
    result = workflow_prime(args.session, project_dir=args.project_dir)
    return _output(result, args, result["context"])


def cmd_task(args: argparse.Namespace) -> int:
    result = workflow_update_task(args.session, args.task_id, args.status, project_dir=args.project_dir)
    text = None
    if result.get("success"):
        task = result["task"]
        text = f"Task #{task['id']} {task['title']}: {task['status']}"
    return _output(result, args, text)


def cmd_modes(args: argparse.Namespace) -> int:
    result = workflow_list_modes(project_dir=args.project_dir)
    lines = []
    for mode in result["modes"]:
        aliases = f" [{', '.join(mode['aliases'])}]" if mode["aliases"] else ""
        lines.append(f"{mode['id']:<16} {mode['name']}{aliases}: {mode['description']}")
    return _output(result, args, "\n".join(lines))


def cmd_batteries(args: argparse.Namespace) -> int:
    result = scaffold_batteries(project_dir=args.project_dir, update=args.update)
    lines = [f"created  {p}" for p in result["created"]]
    lines += [f"updated  {p}" for p in result["updated"]]
    lines += [f"skipped  {p} (exists, use --update)" for p in result["skipped"]]
    return _output(result, args, "\n".join(lines))


COMMANDS = {
    "enter": cmd_enter,
    "status": cmd_status,
    "can-exit": cmd_can_exit,
    "exit": cmd_exit,
    "init": cmd_init,
    "teardown": cmd_teardown,
    "prime": cmd_prime,
    "task": cmd_task,
    "modes": cmd_modes,
    "batteries": cmd_batteries,
}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project-dir", help="Project root (default: CLAUDE_PROJECT_DIR or nearest .claude/)")
    common.add_argument("--json", action="store_true", help="Print the result as JSON")

    session = argparse.ArgumentParser(add_help=False)
    session.add_argument("--session", required=True, help="Session id")

    parser = argparse.ArgumentParser(prog="kata", description="Workflow modes for agent sessions")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_enter = subparsers.add_parser("enter", parents=[common, session], help="Enter a mode and create its tasks")
    p_enter.add_argument("mode", nargs="?", help="Mode id or alias")
    p_enter.add_argument("--template", help="Ad-hoc template file instead of a named mode")
    p_enter.add_argument("--context", action="append", default=[], metavar="KEY=VALUE",
                         help="Value for task title placeholders (repeatable)")
    p_enter.add_argument("--force", action="store_true", help="Start a new workflow even if the mode is active")

    subparsers.add_parser("status", parents=[common, session], help="Show mode, phase and task progress")
    subparsers.add_parser("can-exit", parents=[common, session], help="Exit 0 if the session may stop, 1 if not")

    p_exit = subparsers.add_parser("exit", parents=[common, session], help="Leave the current mode")
    p_exit.add_argument("--force", action="store_true", help="Leave even with open tasks")

    subparsers.add_parser("init", parents=[common, session], help="Create the session record")
    subparsers.add_parser("teardown", parents=[common, session], help="Delete the session record")
    subparsers.add_parser("prime", parents=[common, session], help="Print context for the agent")

    p_task = subparsers.add_parser("task", parents=[common, session], help="Update a task's status")
    p_task.add_argument("task_id", help="Task id")
    p_task.add_argument("--status", required=True,
                        choices=task_status_names() + ["pending", "in_progress", "completed"])

    subparsers.add_parser("modes", parents=[common], help="List available modes")

    p_batt = subparsers.add_parser("batteries", parents=[common],
                                   help="Copy built-in modes and templates into .claude/workflows/")
    p_batt.add_argument("--update", action="store_true", help="Overwrite existing files")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(get_log_level(args.project_dir))

    try:
        return COMMANDS[args.command](args)
    except (argparse.ArgumentTypeError, ValueError) as e:
        print(f"kata: {e}", file=sys.stderr)
        return EXIT_REFUSED
    except (KataError, OSError, Timeout) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        if args.json:
            print(json.dumps({"success": False, "error": str(e), "type": type(e).__name__}, indent=2))
        else:
            print(f"kata: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
