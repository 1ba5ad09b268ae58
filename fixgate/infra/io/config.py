"""Configuration for fixgate.

Provides GateConfig for centralized configuration management. Values are
layered, lowest precedence first:

1. Built-in defaults (the GateConfig field defaults)
2. fixgate.yaml in the repository root, or an explicit --config file
3. Environment variables (including ~/.config/fixgate/.env, see env.py)
4. CLI options (applied by the caller with dataclasses.replace)

Environment Variables:
    FIXGATE_TEST_COMMAND: Test command to run in each workspace
    FIXGATE_TIMEOUT: Per-run timeout in seconds
    FIXGATE_MAX_WORKERS: Number of commits evaluated concurrently
    FIXGATE_MAX_OUTPUT_BYTES: Captured output limit per test run
    FIXGATE_WORKSPACE_ROOT: Directory under which workspaces are created
    FIXGATE_SKIP_TOKEN: Commit message token that waives the check
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from fixgate.domain.changeset import DEFAULT_TEST_PATH_PATTERNS
from fixgate.domain.classifier import (
    DEFAULT_FIX_PREFIX_PATTERNS,
    DEFAULT_ISSUE_REFERENCE_PATTERNS,
    DEFAULT_SKIP_TOKEN,
)
from fixgate.infra.test_runner import DEFAULT_MAX_OUTPUT_BYTES
from fixgate.infra.tools.env import get_workspace_root

CONFIG_FILE_NAME = "fixgate.yaml"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or fails validation."""

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else errors
        if len(self.errors) == 1:
            message = self.errors[0]
        else:
            message = "Configuration validation failed:\n" + "\n".join(
                f"  - {e}" for e in self.errors
            )
        super().__init__(message)


@dataclass(frozen=True)
class GateConfig:
    """Centralized configuration for the regression gate.

    Attributes:
        fix_prefix_patterns: Regexes anchored at the start of the commit
            message that mark it as a bug fix.
        issue_reference_patterns: Regexes matched anywhere in the message
            (e.g. "Fixes #42").
        skip_token: Literal substring that waives the check.
        test_path_patterns: Globs identifying test files.
        test_command: Shell command (string) or argv (list) run in each
            workspace. "{test_files}" in a string command is replaced with
            the test files touched by the commit.
        timeout_seconds: Wall-clock limit per test run.
        max_workers: Commits evaluated concurrently.
        max_output_bytes: Captured output kept per test run.
        workspace_root: Directory under which workspaces are allocated.
        git_timeout_seconds: Limit for individual git commands.
    """

    fix_prefix_patterns: tuple[str, ...] = DEFAULT_FIX_PREFIX_PATTERNS
    issue_reference_patterns: tuple[str, ...] = DEFAULT_ISSUE_REFERENCE_PATTERNS
    skip_token: str = DEFAULT_SKIP_TOKEN
    test_path_patterns: tuple[str, ...] = DEFAULT_TEST_PATH_PATTERNS
    test_command: str | tuple[str, ...] | None = None
    timeout_seconds: float = 600.0
    max_workers: int = 4
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    workspace_root: Path = field(default_factory=get_workspace_root)
    git_timeout_seconds: float = 120.0

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages. Empty list if configuration is valid.
        """
        errors: list[str] = []
        for name in ("fix_prefix_patterns", "issue_reference_patterns"):
            for pattern in getattr(self, name):
                try:
                    re.compile(pattern)
                except re.error as e:
                    errors.append(f"{name}: invalid regular expression {pattern!r}: {e}")
        if not self.skip_token:
            errors.append("skip_token must not be empty")
        if not self.test_path_patterns:
            errors.append("test_path_patterns must contain at least one pattern")
        if self.timeout_seconds <= 0:
            errors.append(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.git_timeout_seconds <= 0:
            errors.append(
                f"git_timeout_seconds must be positive, got {self.git_timeout_seconds}"
            )
        if self.max_workers < 1:
            errors.append(f"max_workers must be at least 1, got {self.max_workers}")
        if self.max_output_bytes < 1024:
            errors.append(
                f"max_output_bytes must be at least 1024, got {self.max_output_bytes}"
            )
        if not self.workspace_root.is_absolute():
            errors.append(
                f"workspace_root should be an absolute path, got: {self.workspace_root}"
            )
        return errors


_ALLOWED_FIELDS = frozenset(f.name for f in fields(GateConfig))
_TUPLE_FIELDS = frozenset(
    {
        "fix_prefix_patterns",
        "issue_reference_patterns",
        "test_path_patterns",
    }
)

# Environment variable -> (field name, converter)
_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "FIXGATE_TEST_COMMAND": ("test_command", str),
    "FIXGATE_TIMEOUT": ("timeout_seconds", float),
    "FIXGATE_MAX_WORKERS": ("max_workers", int),
    "FIXGATE_MAX_OUTPUT_BYTES": ("max_output_bytes", int),
    "FIXGATE_WORKSPACE_ROOT": ("workspace_root", Path),
    "FIXGATE_SKIP_TOKEN": ("skip_token", str),
}


def load_config(
    repo_path: Path,
    config_file: Path | None = None,
    *,
    environ: dict[str, str] | None = None,
    validate: bool = True,
) -> GateConfig:
    """Load configuration for a repository.

    Args:
        repo_path: Repository root; fixgate.yaml there is read if present.
        config_file: Explicit config file. Must exist when given.
        environ: Environment to read overrides from (default: os.environ).
        validate: Run validate() and raise on errors.

    Returns:
        GateConfig with file and environment values applied.

    Raises:
        ConfigError: If the file is unreadable, has invalid YAML or unknown
            fields, a value has the wrong type, or validation fails.
    """
    values: dict[str, Any] = {}

    path = config_file if config_file is not None else repo_path / CONFIG_FILE_NAME
    if config_file is not None and not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")
    if path.exists():
        values.update(_read_config_file(path))

    env = os.environ if environ is None else environ
    for var, (name, convert) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            values[name] = convert(raw)
        except ValueError as e:
            raise ConfigError(f"{var}: invalid value {raw!r} ({e})") from e

    config = GateConfig(**values)
    if validate:
        errors = config.validate()
        if errors:
            raise ConfigError(errors)
    return config


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {path.name}: {e}") from e

    # Empty file or comments only
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must be a YAML mapping, got {type(data).__name__}")

    unknown = sorted(str(k) for k in set(data) - _ALLOWED_FIELDS)
    if unknown:
        raise ConfigError(f"Unknown field '{unknown[0]}' in {path.name}")

    return {name: _coerce_field(name, value, path.name) for name, value in data.items()}


def _coerce_field(name: str, value: Any, source: str) -> Any:  # noqa: ANN401
    if name in _TUPLE_FIELDS:
        if isinstance(value, str):
            return (value,)
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{source}: '{name}' must be a list of strings")
        return tuple(value)
    if name == "test_command":
        if isinstance(value, str):
            return value
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return tuple(value)
        raise ConfigError(f"{source}: 'test_command' must be a string or list of strings")
    if name == "workspace_root":
        if not isinstance(value, str):
            raise ConfigError(f"{source}: 'workspace_root' must be a string")
        return Path(value).expanduser()
    if name == "skip_token":
        if not isinstance(value, str):
            raise ConfigError(f"{source}: 'skip_token' must be a string")
        return value
    if name in ("max_workers", "max_output_bytes"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{source}: '{name}' must be an integer")
        return value
    # timeout_seconds, git_timeout_seconds
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{source}: '{name}' must be a number")
    return float(value)
