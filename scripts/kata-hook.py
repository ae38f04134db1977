#!/usr/bin/env python3
"""
kata hook entry point for checkouts where the package is not installed.

Usage in .claude/settings.json:
{
  "hooks": {
    "SessionStart": [{"hooks": [{"type": "command", "command": "python scripts/kata-hook.py"}]}],
    "UserPromptSubmit": [{"hooks": [{"type": "command", "command": "python scripts/kata-hook.py"}]}],
    "Stop": [{"hooks": [{"type": "command", "command": "python scripts/kata-hook.py"}]}]
  }
}
"""

import sys
from pathlib import Path

# Add MCP server package to path so we can import directly
_SCRIPT_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _SCRIPT_DIR.parent
_MCP_PKG = _REPO_ROOT / "mcp" / "kata-workflow-server"
if str(_MCP_PKG) not in sys.path:
    sys.path.insert(0, str(_MCP_PKG))

try:
    from kata_workflow_server.hooks import main
except ImportError as e:
    print(
        f"Error: Could not import kata-workflow-server package.\n"
        f"  Looked in: {_MCP_PKG}\n"
        f"  Import error: {e}\n"
        f"  Fix: Run 'pip install -e .' from the repository root.",
        file=sys.stderr,
    )
    sys.exit(1)


if __name__ == "__main__":
    main()
