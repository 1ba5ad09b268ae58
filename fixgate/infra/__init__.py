"""Infrastructure package: git, workspaces, subprocesses, config and console IO."""
