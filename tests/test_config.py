"""Unit tests for fixgate/infra/io/config.py."""

from dataclasses import replace
from pathlib import Path

import pytest

from fixgate.domain.classifier import DEFAULT_SKIP_TOKEN
from fixgate.infra.io.config import CONFIG_FILE_NAME, ConfigError, GateConfig, load_config


class TestGateConfigDefaults:
    """Test GateConfig default values."""

    def test_defaults(self) -> None:
        config = GateConfig()
        assert config.skip_token == DEFAULT_SKIP_TOKEN
        assert config.test_command is None
        assert config.timeout_seconds == 600.0
        assert config.max_workers == 4
        assert config.max_output_bytes == 256 * 1024
        assert config.workspace_root.is_absolute()
        assert config.validate() == []

    def test_workspace_root_from_env(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("FIXGATE_WORKSPACE_ROOT", str(tmp_path / "ws"))
        assert GateConfig().workspace_root == tmp_path / "ws"


class TestGateConfigValidate:
    """Test GateConfig.validate()."""

    def test_collects_all_errors(self) -> None:
        config = replace(
            GateConfig(),
            timeout_seconds=0,
            max_workers=0,
            max_output_bytes=10,
            skip_token="",
            fix_prefix_patterns=("fix(",),
            workspace_root=Path("relative/dir"),
        )
        errors = config.validate()
        assert len(errors) == 6
        assert any("invalid regular expression" in e for e in errors)
        assert any("max_workers" in e for e in errors)
        assert any("workspace_root" in e for e in errors)

    def test_config_error_message_lists_errors(self) -> None:
        error = ConfigError(["first problem", "second problem"])
        assert error.errors == ["first problem", "second problem"]
        assert "  - first problem" in str(error)
        assert str(ConfigError("only one")) == "only one"


class TestLoadConfig:
    """Test load_config() layering."""

    def test_no_file_no_env(self, tmp_path: Path) -> None:
        config = load_config(tmp_path, environ={})
        assert config.test_command is None
        assert config.max_workers == 4

    def test_yaml_values(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text(
            "test_command: pytest -q {test_files}\n"
            "timeout_seconds: 30\n"
            "max_workers: 2\n"
            "skip_token: '[no-gate]'\n"
            "test_path_patterns:\n"
            "  - 'checks/*'\n"
            "fix_prefix_patterns: 'BUGFIX '\n"
            f"workspace_root: {tmp_path / 'ws'}\n"
        )
        config = load_config(tmp_path, environ={})
        assert config.test_command == "pytest -q {test_files}"
        assert config.timeout_seconds == 30.0
        assert isinstance(config.timeout_seconds, float)
        assert config.max_workers == 2
        assert config.skip_token == "[no-gate]"
        assert config.test_path_patterns == ("checks/*",)
        assert config.fix_prefix_patterns == ("BUGFIX ",)
        assert config.workspace_root == tmp_path / "ws"

    def test_argv_test_command(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("test_command: [pytest, -x]\n")
        assert load_config(tmp_path, environ={}).test_command == ("pytest", "-x")

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("# nothing here\n")
        assert load_config(tmp_path, environ={}).max_workers == 4

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("max_workers: 2\ntimeout_seconds: 30\n")
        config = load_config(
            tmp_path,
            environ={
                "FIXGATE_MAX_WORKERS": "8",
                "FIXGATE_TEST_COMMAND": "make test",
                "FIXGATE_TIMEOUT": "",
            },
        )
        assert config.max_workers == 8
        assert config.test_command == "make test"
        assert config.timeout_seconds == 30.0

    def test_explicit_config_file(self, tmp_path: Path) -> None:
        other = tmp_path / "ci" / "gate.yaml"
        other.parent.mkdir()
        other.write_text("max_workers: 3\n")
        (tmp_path / CONFIG_FILE_NAME).write_text("max_workers: 2\n")
        assert load_config(tmp_path, other, environ={}).max_workers == 3

    def test_missing_explicit_config_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path, tmp_path / "missing.yaml", environ={})

    def test_unknown_field(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("max_worker: 2\n")
        with pytest.raises(ConfigError, match="Unknown field 'max_worker'"):
            load_config(tmp_path, environ={})

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("test_command: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(tmp_path, environ={})

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must be a YAML mapping"):
            load_config(tmp_path, environ={})

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("max_workers: two\n", "must be an integer"),
            ("max_workers: true\n", "must be an integer"),
            ("timeout_seconds: soon\n", "must be a number"),
            ("test_command: 5\n", "string or list of strings"),
            ("test_path_patterns: [1, 2]\n", "list of strings"),
        ],
    )
    def test_wrong_types(self, tmp_path: Path, content: str, message: str) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text(content)
        with pytest.raises(ConfigError, match=message):
            load_config(tmp_path, environ={})

    def test_invalid_env_value(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="FIXGATE_MAX_WORKERS"):
            load_config(tmp_path, environ={"FIXGATE_MAX_WORKERS": "many"})

    def test_validation_failure(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("max_workers: 0\n")
        with pytest.raises(ConfigError, match="max_workers must be at least 1"):
            load_config(tmp_path, environ={})
        config = load_config(tmp_path, environ={}, validate=False)
        assert config.max_workers == 0
