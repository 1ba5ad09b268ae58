"""Environment configuration and loading for fixgate.

Centralizes config paths and dotenv loading. Call load_user_env() before
reading configuration so values from ~/.config/fixgate/.env are visible.
"""

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env)
USER_CONFIG_DIR = Path.home() / ".config" / "fixgate"


def get_workspace_root() -> Path:
    """Get the workspace root, respecting FIXGATE_WORKSPACE_ROOT env var.

    This function evaluates the env var at call time, so it respects
    values loaded from .env via load_user_env().
    """
    default = Path(tempfile.gettempdir()) / "fixgate-workspaces"
    return Path(os.environ.get("FIXGATE_WORKSPACE_ROOT", str(default)))


def load_user_env() -> None:
    """Load environment from the user config directory.

    Loads ${USER_CONFIG_DIR}/.env (typically ~/.config/fixgate/.env).
    Variables already set in the process environment win.
    """
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")
