"""
Tests for configuration loading

Run with: pytest tests/test_config_tools.py -v
"""

import logging
import pytest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kata_workflow_server.config_tools import (
    DEFAULT_CONFIG,
    _deep_merge,
    config_get_effective,
    configure_logging,
    resolve_config_path,
    resolve_project_dir,
)
from kata_workflow_server.errors import ConfigError


class TestEffectiveConfig:

    def test_defaults_without_files(self, project):
        result = config_get_effective()

        assert result["config"] == DEFAULT_CONFIG
        assert result["has_global"] is False
        assert result["has_project"] is False
        assert result["project_dir"] == str(project.resolve())

    def test_project_overrides_global(self, project):
        global_dir = project.parent / "home" / ".claude"
        global_dir.mkdir(parents=True)
        (global_dir / "workflow-config.yaml").write_text(
            "sessions_dir: /global/sessions\nhooks:\n  prompt_reminder: false\n"
        )
        (project / ".claude" / "workflow-config.yaml").write_text("sessions_dir: .kata/sessions\n")

        result = config_get_effective()
        config = result["config"]

        assert config["sessions_dir"] == ".kata/sessions"
        assert config["hooks"]["prompt_reminder"] is False
        assert config["hooks"]["stop_enforcement"] is True
        assert len(result["sources"]) == 2

    def test_unknown_keys_warn(self, project):
        (project / ".claude" / "workflow-config.yaml").write_text("bogus: 1\nhooks:\n  nope: true\n")
        warnings = config_get_effective()["warnings"]

        assert "Unknown config key: 'bogus'" in warnings
        assert "Unknown config key: 'hooks.nope'" in warnings

    def test_wrong_type_warns(self, project):
        (project / ".claude" / "workflow-config.yaml").write_text("sessions_dir: 3\n")
        warnings = config_get_effective()["warnings"]
        assert any("expected str" in w for w in warnings)

    def test_malformed_yaml_is_error(self, project):
        (project / ".claude" / "workflow-config.yaml").write_text("hooks: [\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            config_get_effective()

    def test_non_mapping_is_error(self, project):
        (project / ".claude" / "workflow-config.yaml").write_text("- a\n")
        with pytest.raises(ConfigError, match="mapping"):
            config_get_effective()

    def test_empty_file_uses_defaults(self, project):
        (project / ".claude" / "workflow-config.yaml").write_text("")
        result = config_get_effective()
        assert result["config"] == DEFAULT_CONFIG
        assert result["has_project"] is True


class TestProjectDir:

    def test_explicit_wins(self, project, tmp_path):
        assert resolve_project_dir(str(tmp_path)) == tmp_path.resolve()

    def test_env_var(self, project):
        assert resolve_project_dir() == project.resolve()

    def test_nearest_claude_ancestor(self, project, monkeypatch):
        monkeypatch.delenv("CLAUDE_PROJECT_DIR")
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        with patch("kata_workflow_server.config_tools.Path.cwd", return_value=nested):
            assert resolve_project_dir() == project.resolve()


class TestHelpers:

    def test_deep_merge_keeps_siblings(self):
        merged = _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}}

    def test_relative_path_hangs_off_project(self, tmp_path):
        assert resolve_config_path(".claude/sessions", tmp_path) == tmp_path / ".claude" / "sessions"

    def test_absolute_path_kept(self, tmp_path):
        assert resolve_config_path(str(tmp_path / "x"), Path("/elsewhere")) == tmp_path / "x"

    def test_configure_logging_uses_env_level(self, monkeypatch):
        monkeypatch.setenv("KATA_LOG_LEVEL", "debug")
        with patch("kata_workflow_server.config_tools.logging.basicConfig") as basic:
            configure_logging()
        assert basic.call_args.kwargs["level"] == logging.DEBUG
        assert basic.call_args.kwargs["stream"] is sys.stderr
