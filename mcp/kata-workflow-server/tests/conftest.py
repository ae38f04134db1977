import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


TWO_PHASE_MODES = """\
modes:
  task:
    name: Task
    description: Two independent steps
    workflow_prefix: TK
    phases:
      - id: p0
        name: Edit
        task_config:
          title: "Edit the file"
      - id: p1
        name: Check
        task_config:
          title: "Check the result"
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Isolated project root with its own HOME and XDG config dir."""
    home = tmp_path / "home"
    home.mkdir()
    project_dir = tmp_path / "project"
    (project_dir / ".claude").mkdir(parents=True)

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(project_dir))
    monkeypatch.delenv("KATA_LOG_LEVEL", raising=False)
    return project_dir


@pytest.fixture
def write_project_modes(project):
    def write(text: str) -> Path:
        path = project / ".claude" / "workflows" / "modes.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path
    return write
