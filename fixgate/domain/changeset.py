"""Change-set extraction: split a commit's diff into test and non-test files.

Classification is a pure function of the file path. The predicate is injected,
so a richer strategy can replace GlobTestPathPredicate without touching
extract_change_set().
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from fixgate.core.models import ChangeKind, ChangeSet

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fixgate.core.models import FileChange
    from fixgate.core.protocols import PathPredicate

# Patterns without "/" match the basename; patterns with "/" match the
# full repository-relative path ("*" also matches "/").
DEFAULT_TEST_PATH_PATTERNS = (
    "*_test.*",
    "test_*.py",
    "*_spec.*",
    "*.test.*",
    "*.spec.*",
    "*Test.java",
    "*Tests.java",
    "*Test.kt",
    "tests/*",
    "test/*",
    "*/tests/*",
    "*/test/*",
    "*/__tests__/*",
    "spec/*",
)


class GlobTestPathPredicate:
    """Path predicate backed by glob patterns."""

    def __init__(self, patterns: Iterable[str] = DEFAULT_TEST_PATH_PATTERNS) -> None:
        self.patterns = tuple(patterns)
        self._basename_patterns = tuple(p for p in self.patterns if "/" not in p)
        self._path_patterns = tuple(p for p in self.patterns if "/" in p)

    def __call__(self, path: str) -> bool:
        basename = path.rsplit("/", 1)[-1]
        if any(fnmatchcase(basename, p) for p in self._basename_patterns):
            return True
        return any(fnmatchcase(path, p) for p in self._path_patterns)

    def __repr__(self) -> str:
        return f"GlobTestPathPredicate({list(self.patterns)!r})"


def extract_change_set(
    changes: Iterable[FileChange], is_test_path: PathPredicate
) -> ChangeSet:
    """Partition file changes into test and non-test changes.

    Files are routed in diff order with their hunks untouched. Renames are
    classified by destination path and deletions by the deleted path, so a
    deleted test file is a test change. Hunk content is never inspected: a
    test file with only whitespace edits is still a test change.

    Args:
        changes: File changes in diff order.
        is_test_path: Predicate deciding whether a path is test code.

    Returns:
        ChangeSet whose partitions together hold every input change once.
    """
    test_changes: list[FileChange] = []
    non_test_changes: list[FileChange] = []
    for change in changes:
        # FileChange.path is the destination for renames, the source for deletions.
        path = change.path if change.kind is not ChangeKind.DELETED else change.old_path
        if is_test_path(path):
            test_changes.append(change)
        else:
            non_test_changes.append(change)
    return ChangeSet(
        test_changes=tuple(test_changes), non_test_changes=tuple(non_test_changes)
    )
