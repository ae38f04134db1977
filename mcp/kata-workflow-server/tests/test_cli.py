"""
Tests for the kata command line

Run with: pytest tests/test_cli.py -v
"""

import json
import pytest
from pathlib import Path
from unittest.mock import patch

from filelock import Timeout

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import TWO_PHASE_MODES

from kata_workflow_server.cli import EXIT_ERROR, EXIT_OK, EXIT_REFUSED, main
from kata_workflow_server.session_state import FileSessionStore


def _run_json(capsys, *argv):
    code = main([*argv, "--json"])
    return code, json.loads(capsys.readouterr().out)


class TestTaskModeFlow:

    def test_enter_block_close_allow(self, project, write_project_modes, capsys):
        write_project_modes(TWO_PHASE_MODES)

        code, entered = _run_json(capsys, "enter", "task", "--session", "S1")
        assert code == EXIT_OK
        assert len(entered["tasks"]) == 2

        assert main(["can-exit", "--session", "S1"]) == EXIT_REFUSED
        out = capsys.readouterr().out
        assert "Edit the file" in out
        assert "Check the result" in out

        first, second = entered["tasks"]
        assert main(["task", first["task_id"], "--status", "closed", "--session", "S1"]) == EXIT_OK
        capsys.readouterr()

        assert main(["can-exit", "--session", "S1"]) == EXIT_REFUSED
        out = capsys.readouterr().out
        assert "Check the result" in out
        assert "Edit the file" not in out
        assert "1 of 2 tasks" in out

        assert main(["task", second["task_id"], "--status", "closed", "--session", "S1"]) == EXIT_OK
        assert main(["can-exit", "--session", "S1"]) == EXIT_OK

    def test_exit_refused_then_forced(self, project, capsys):
        main(["enter", "task", "--session", "S1"])

        assert main(["exit", "--session", "S1"]) == EXIT_REFUSED
        assert main(["exit", "--session", "S1", "--force"]) == EXIT_OK
        capsys.readouterr()

        code, status = _run_json(capsys, "status", "--session", "S1")
        assert code == EXIT_OK
        assert status["current_mode"] is None


class TestCommands:

    def test_can_exit_without_session_record(self, project, capsys):
        assert main(["can-exit", "--session", "S1"]) == EXIT_OK

    def test_unknown_mode_refused(self, project, capsys):
        assert main(["enter", "nope", "--session", "S1"]) == EXIT_REFUSED
        assert "Unknown mode" in capsys.readouterr().err

    def test_enter_needs_mode_or_template(self, project, capsys):
        assert main(["enter", "--session", "S1"]) == EXIT_REFUSED

    def test_context_pairs(self, project, write_project_modes, capsys):
        write_project_modes(
            "modes:\n"
            "  bug:\n"
            "    phases:\n"
            "      - {id: fix, task_config: {title: 'Fix {issue}'}}\n"
        )
        code, entered = _run_json(capsys, "enter", "bug", "--session", "S1", "--context", "issue=7")
        assert code == EXIT_OK

        _, status = _run_json(capsys, "status", "--session", "S1")
        assert status["phases"][0]["title"] == "Fix 7"

    def test_bad_context_pair(self, project, capsys):
        assert main(["enter", "task", "--session", "S1", "--context", "novalue"]) == EXIT_REFUSED

    def test_session_is_required(self, project):
        with pytest.raises(SystemExit):
            main(["status"])

    def test_corrupt_state_is_an_error(self, project, capsys):
        path = project / ".claude" / "sessions" / "S1" / "state.json"
        path.parent.mkdir(parents=True)
        path.write_text("not json")

        assert main(["status", "--session", "S1"]) == EXIT_ERROR
        assert "kata teardown --session S1" in capsys.readouterr().err

        assert main(["teardown", "--session", "S1"]) == EXIT_OK
        assert main(["status", "--session", "S1"]) == EXIT_OK

    def test_broken_modes_file_is_an_error(self, project, write_project_modes, capsys):
        write_project_modes("modes: {task: [")
        code, result = _run_json(capsys, "enter", "task", "--session", "S1")
        assert code == EXIT_ERROR
        assert result["type"] == "ConfigError"

    def test_modes_lists_builtins(self, project, capsys):
        assert main(["modes"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "planning" in out
        assert "quick" in out

    def test_prime_outside_mode(self, project, capsys):
        assert main(["prime", "--session", "S1"]) == EXIT_OK
        assert "Available modes" in capsys.readouterr().out

    def test_invalid_session_id(self, project, capsys):
        assert main(["init", "--session", "../x"]) == EXIT_REFUSED

    def test_failed_state_write_is_an_error(self, project, capsys):
        with patch("kata_workflow_server.session_state.os.replace", side_effect=OSError("disk full")):
            assert main(["init", "--session", "S1"]) == EXIT_ERROR
        assert "kata: disk full" in capsys.readouterr().err

    def test_lock_timeout_is_an_error(self, project, capsys):
        with patch.object(FileSessionStore, "save", side_effect=Timeout("state.json.lock")):
            code, result = _run_json(capsys, "init", "--session", "S1")
        assert code == EXIT_ERROR
        assert result["type"] == "Timeout"
