"""Console logging helpers for fixgate.

Colored, timestamped progress lines with a stable color per commit, so the
interleaved output of concurrent evaluations stays readable.
"""

from datetime import datetime

# Toggled by `fixgate check --verbose`
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    global _verbose_enabled
    _verbose_enabled = enabled


def truncate_text(text: str, max_length: int) -> str:
    """Shorten text to max_length characters plus "...".

    Verbose mode shows everything, so text is returned untouched there.
    """
    if _verbose_enabled or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class Colors:
    """ANSI escape sequences used by the console output."""

    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"
    MUTED = GRAY


# Cycled through as new commits show up in the output
COMMIT_COLORS = (
    "\033[96m",
    "\033[93m",
    "\033[95m",
    "\033[92m",
    "\033[94m",
    "\033[97m",
)

_commit_colors: dict[str, str] = {}


def get_commit_color(commit_id: str) -> str:
    """Return the color assigned to commit_id, assigning the next one if new."""
    color = _commit_colors.get(commit_id)
    if color is None:
        color = COMMIT_COLORS[len(_commit_colors) % len(COMMIT_COLORS)]
        _commit_colors[commit_id] = color
    return color


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    commit_id: str | None = None,
) -> None:
    """Print one timestamped line, prefixed with the commit id when given."""
    clock = datetime.now().strftime("%H:%M:%S")
    tag = ""
    if commit_id:
        tag = f"{get_commit_color(commit_id)}[{commit_id[:12]}]{Colors.RESET} "
    shade = Colors.MUTED if dim else ""
    print(f"{Colors.GRAY}{clock}{Colors.RESET} {tag}{shade}{color}{icon} {message}{Colors.RESET}")


def log_verbose(
    icon: str,
    message: str,
    color: str = Colors.MUTED,
    commit_id: str | None = None,
) -> None:
    """Like log(), but only printed when verbose output is enabled."""
    if _verbose_enabled:
        log(icon, message, color, commit_id=commit_id)
