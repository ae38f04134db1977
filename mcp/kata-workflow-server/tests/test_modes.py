"""
Tests for the mode definition store

Run with: pytest tests/test_modes.py -v
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kata_workflow_server.errors import ConfigError, NotFoundError
from kata_workflow_server.modes import (
    BUILTIN_MODES_FILE,
    ModeDefinition,
    get_mode_sources,
    list_modes,
    load_modes,
    resolve_mode,
)
from kata_workflow_server.template_parser import Phase, TaskConfig


class TestBuiltinModes:

    def test_builtin_modes_load(self, project):
        modes = load_modes()
        assert {"task", "planning", "implementation", "research"} <= set(modes)

    def test_builtin_task_mode_has_chained_phases(self, project):
        task = load_modes()["task"]
        assert task.phases[0].depends_on == ()
        for prev, phase in zip(task.phases, task.phases[1:]):
            assert phase.depends_on == (prev.id,)

    def test_instructions_come_from_template_body(self, project):
        task = load_modes()["task"]
        assert "task mode" in task.instructions

    def test_only_builtin_source_without_overrides(self, project):
        assert get_mode_sources() == [BUILTIN_MODES_FILE]


class TestOverrides:

    def test_project_mode_replaces_builtin_wholesale(self, project, write_project_modes):
        write_project_modes(
            "modes:\n"
            "  task:\n"
            "    name: Tiny task\n"
            "    phases:\n"
            "      - id: only\n"
            "        task_config: {title: Do it}\n"
        )
        task = load_modes()["task"]

        assert task.name == "Tiny task"
        assert [p.id for p in task.phases] == ["only"]
        # Nothing survives from the built-in entry.
        assert task.aliases == ()
        assert task.workflow_prefix is None
        assert task.instructions == ""

    def test_project_adds_new_modes_and_keeps_others(self, project, write_project_modes):
        write_project_modes(
            "modes:\n"
            "  review:\n"
            "    name: Review\n"
            "    phases:\n"
            "      - id: r0\n"
        )
        modes = load_modes()
        assert "review" in modes
        assert "planning" in modes

    def test_user_layer_sits_between_builtin_and_project(self, project, write_project_modes):
        user_file = project.parent / "home" / ".config" / "kata" / "modes.yaml"
        user_file.parent.mkdir(parents=True)
        user_file.write_text(
            "modes:\n"
            "  task:\n"
            "    name: User task\n"
            "    phases: [{id: u0}]\n"
            "  research:\n"
            "    name: User research\n"
            "    phases: [{id: u1}]\n"
        )
        write_project_modes(
            "modes:\n"
            "  task:\n"
            "    name: Project task\n"
            "    phases: [{id: p0}]\n"
        )
        modes = load_modes()
        assert modes["task"].name == "Project task"
        assert modes["research"].name == "User research"

    def test_malformed_override_fails_closed(self, project, write_project_modes):
        write_project_modes("modes:\n  task: [unclosed\n")
        with pytest.raises(ConfigError):
            load_modes()
        with pytest.raises(ConfigError):
            resolve_mode("task")

    def test_cyclic_override_fails_closed(self, project, write_project_modes):
        write_project_modes(
            "modes:\n"
            "  task:\n"
            "    name: Task\n"
            "    phases:\n"
            "      - {id: a, task_config: {depends_on: [b]}}\n"
            "      - {id: b, task_config: {depends_on: [a]}}\n"
        )
        with pytest.raises(ConfigError, match="cycle"):
            resolve_mode("planning")

    def test_template_and_inline_phases_conflict(self, project, write_project_modes):
        write_project_modes(
            "modes:\n"
            "  task:\n"
            "    template: task.md\n"
            "    phases: [{id: a}]\n"
        )
        with pytest.raises(ConfigError, match="both"):
            load_modes()

    def test_missing_template_is_config_error(self, project, write_project_modes):
        write_project_modes("modes:\n  task:\n    template: missing.md\n")
        with pytest.raises(ConfigError, match="missing.md"):
            load_modes()

    def test_template_resolved_from_templates_dir(self, project, write_project_modes):
        modes_file = write_project_modes("modes:\n  custom:\n    template: custom.md\n")
        templates = modes_file.parent / "templates"
        templates.mkdir()
        (templates / "custom.md").write_text("---\nname: Custom\nphases:\n  - id: c0\n---\nDo custom things.\n")

        custom = load_modes()["custom"]
        assert custom.name == "Custom"
        assert custom.instructions == "Do custom things.\n"

    def test_mode_without_phases_rejected(self, project, write_project_modes):
        write_project_modes("modes:\n  empty:\n    name: Empty\n")
        with pytest.raises(ConfigError, match="no phases"):
            load_modes()


class TestResolveMode:

    def test_exact_id(self, project):
        assert resolve_mode("planning").id == "planning"

    def test_alias_case_insensitive(self, project):
        assert resolve_mode("Quick").id == "task"
        assert resolve_mode("PLAN").id == "planning"

    def test_unknown_mode_lists_available(self, project):
        with pytest.raises(NotFoundError) as exc:
            resolve_mode("nonexistent")
        assert "research" in str(exc.value)

    def test_adhoc_template_bypasses_merge(self, project, tmp_path):
        template = tmp_path / "oneoff.md"
        template.write_text("---\nname: One off\nphases:\n  - id: x\n---\n")

        mode = resolve_mode(None, template_path=template)

        assert mode.id == "oneoff"
        assert mode.source == template
        assert "oneoff" not in load_modes()

    def test_adhoc_template_must_have_phases(self, project, tmp_path):
        template = tmp_path / "empty.md"
        template.write_text("---\nname: Empty\n---\n")
        with pytest.raises(ConfigError, match="no phases"):
            resolve_mode(None, template_path=template)


class TestModeDefinition:

    def _mode(self, **kwargs):
        phase = Phase(id="a", name="A", task_config=TaskConfig(title="A"))
        return ModeDefinition(phases=(phase,), **kwargs)

    def test_prefix_from_workflow_prefix(self):
        assert self._mode(id="research", name="R", workflow_prefix="re").prefix == "RE"

    def test_prefix_defaults_to_id(self):
        assert self._mode(id="bug-fix", name="B").prefix == "BU"

    def test_list_modes_summary(self, project):
        summary = {m["id"]: m for m in list_modes()}
        assert summary["task"]["aliases"] == ["quick", "chore"]
        assert summary["task"]["phases"] == ["p0", "p1", "p2", "p3"]
