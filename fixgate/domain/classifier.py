"""Commit message classification.

Decides whether a commit claims to fix a defect (and therefore needs a
regression test) or explicitly waives the check.

Matching rules:
- Prefix patterns ("fix:", "fix(scope):", "Bug:") are anchored at the start
  of the message.
- Issue-reference patterns ("Fixes #42", "Closes #7") may appear anywhere.
- The skip token is an exact substring and wins over any fix pattern.
All matching is case-sensitive.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fixgate.core.models import Classification

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_FIX_PREFIX_PATTERNS = (
    r"fix(\([^)\n]*\))?!?:",
    r"Bug:",
)
DEFAULT_ISSUE_REFERENCE_PATTERNS = (r"\b(Fixes|Closes|Resolves) #\d+\b",)
DEFAULT_SKIP_TOKEN = "[skip-regression-check]"


@dataclass(frozen=True)
class ClassifierRules:
    """Compiled bug-fix patterns and the skip token."""

    prefix_patterns: tuple[re.Pattern[str], ...]
    issue_patterns: tuple[re.Pattern[str], ...]
    skip_token: str

    @classmethod
    def from_patterns(
        cls,
        prefix_patterns: Iterable[str] = DEFAULT_FIX_PREFIX_PATTERNS,
        issue_patterns: Iterable[str] = DEFAULT_ISSUE_REFERENCE_PATTERNS,
        skip_token: str = DEFAULT_SKIP_TOKEN,
    ) -> ClassifierRules:
        """Compile pattern strings into rules.

        Raises:
            re.error: If a pattern is not a valid regular expression.
        """
        return cls(
            prefix_patterns=tuple(re.compile(p) for p in prefix_patterns),
            issue_patterns=tuple(re.compile(p) for p in issue_patterns),
            skip_token=skip_token,
        )

    def is_fix(self, message: str) -> bool:
        if any(p.match(message) for p in self.prefix_patterns):
            return True
        return any(p.search(message) for p in self.issue_patterns)


def classify_commit_message(
    message: str, rules: ClassifierRules | None = None
) -> Classification:
    """Classify a commit message.

    Args:
        message: Full commit message (subject and body).
        rules: Patterns to apply. Defaults to the built-in rule set.

    Returns:
        WAIVED if the skip token is present, APPLICABLE if a bug-fix pattern
        matches, NOT_APPLICABLE otherwise.
    """
    if rules is None:
        rules = _DEFAULT_RULES
    if rules.skip_token and rules.skip_token in message:
        return Classification.WAIVED
    if rules.is_fix(message):
        return Classification.APPLICABLE
    return Classification.NOT_APPLICABLE


_DEFAULT_RULES = ClassifierRules.from_patterns()
