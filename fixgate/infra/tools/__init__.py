"""Tools package: command execution and environment utilities."""

from fixgate.infra.tools.command_runner import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
