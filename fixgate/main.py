#!/usr/bin/env python3
"""
fixgate: regression-validation gate for bug-fix commits.

This module is a thin shim that exposes the CLI app from fixgate.cli.
The actual implementation lives in fixgate/cli/cli.py.

Usage:
    fixgate check [OPTIONS] [REV_RANGE]
    fixgate classify MESSAGE
    fixgate clean
"""

from fixgate.cli.cli import bootstrap

# Call bootstrap at module import time so the console entrypoint
# (fixgate.main:app) loads ~/.config/fixgate/.env before any command runs
bootstrap()

from fixgate.cli.cli import app  # noqa: E402

if __name__ == "__main__":
    app()
