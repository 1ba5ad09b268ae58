"""Unified diff parsing.

Parses ``git diff`` output into FileChange/Hunk objects while keeping every
raw line, so a parsed diff can be rendered back byte-for-byte (and a subset
of its files rendered as a patch that ``git apply`` accepts).

Each hunk body is validated against the line counts in its ``@@`` header;
any mismatch raises MalformedDiff.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from fixgate.core.errors import MalformedDiff
from fixgate.core.models import ChangeKind, FileChange, Hunk

_FILE_HEADER = "diff --git "
_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

# Escapes used by git's C-style path quoting (core.quotePath).
_QUOTE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    '"': '"',
    "\\": "\\",
}


@dataclass
class _FileBuilder:
    position: int
    header_lines: list[str]
    hunks: list[Hunk] = field(default_factory=list)

    def build(self) -> FileChange:
        old_path, new_path = _paths_from_git_header(self.header_lines[0])
        kind = ChangeKind.MODIFIED
        for line in self.header_lines[1:]:
            text = line.rstrip("\r\n")
            if text.startswith("new file mode"):
                kind = ChangeKind.ADDED
            elif text.startswith("deleted file mode"):
                kind = ChangeKind.DELETED
            elif text.startswith("rename from "):
                kind = ChangeKind.RENAMED
                old_path = _unquote(text[len("rename from ") :])
            elif text.startswith("rename to "):
                new_path = _unquote(text[len("rename to ") :])
            elif text.startswith("copy from ") or text.startswith("copy to "):
                kind = ChangeKind.ADDED
            elif text.startswith("--- ") and kind is not ChangeKind.RENAMED:
                path = _strip_prefix(_unquote(text[4:].rstrip("\t")))
                if path is not None:
                    old_path = path
            elif text.startswith("+++ ") and kind is not ChangeKind.RENAMED:
                path = _strip_prefix(_unquote(text[4:].rstrip("\t")))
                if path is not None:
                    new_path = path

        if kind is ChangeKind.DELETED:
            path = old_path
        elif kind is ChangeKind.RENAMED:
            path = new_path
        else:
            path = new_path
            old_path = new_path if kind is ChangeKind.ADDED else old_path
        return FileChange(
            path=path,
            old_path=old_path,
            kind=kind,
            header_lines=tuple(self.header_lines),
            hunks=tuple(self.hunks),
            position=self.position,
        )


def parse_unified_diff(text: str) -> tuple[FileChange, ...]:
    """Parse git's unified diff output.

    Args:
        text: Output of ``git diff`` (prefixes ``a/`` and ``b/``).

    Returns:
        File changes in diff order. Empty for an empty diff.

    Raises:
        MalformedDiff: If content appears outside a file section, or a hunk
            body does not match its stated line ranges.
    """
    lines = _split_lines(text)
    files: list[_FileBuilder] = []
    current: _FileBuilder | None = None
    index = 0

    while index < len(lines):
        line = lines[index]
        if line.startswith(_FILE_HEADER):
            current = _FileBuilder(position=len(files), header_lines=[line])
            files.append(current)
            index += 1
        elif line.startswith("@@"):
            if current is None:
                raise MalformedDiff("hunk before any file header", index + 1)
            hunk, index = _parse_hunk(lines, index)
            current.hunks.append(hunk)
        elif current is None:
            raise MalformedDiff("content before the first file header", index + 1)
        elif current.hunks:
            raise MalformedDiff(
                "content beyond the stated line ranges of the last hunk", index + 1
            )
        else:
            current.header_lines.append(line)
            index += 1

    return tuple(builder.build() for builder in files)


def _parse_hunk(lines: list[str], start: int) -> tuple[Hunk, int]:
    header = lines[start]
    match = _HUNK_HEADER.match(header)
    if match is None:
        raise MalformedDiff(f"invalid hunk header {header.strip()!r}", start + 1)

    origin_start = int(match.group(1))
    origin_count = int(match.group(2)) if match.group(2) is not None else 1
    dest_start = int(match.group(3))
    dest_count = int(match.group(4)) if match.group(4) is not None else 1

    remaining_old = origin_count
    remaining_new = dest_count
    index = start + 1
    body: list[str] = []

    while remaining_old > 0 or remaining_new > 0:
        if index >= len(lines):
            raise MalformedDiff(
                f"hunk {header.strip()!r} ends early: missing "
                f"{remaining_old} original and {remaining_new} new line(s)",
                index,
            )
        line = lines[index]
        tag = line[:1]
        if tag == " ":
            remaining_old -= 1
            remaining_new -= 1
        elif tag == "-":
            remaining_old -= 1
        elif tag == "+":
            remaining_new -= 1
        elif tag != "\\":
            raise MalformedDiff(
                f"unexpected line in hunk {header.strip()!r}: {line.rstrip()!r}",
                index + 1,
            )
        if remaining_old < 0 or remaining_new < 0:
            raise MalformedDiff(
                f"hunk {header.strip()!r} exceeds its stated line ranges", index + 1
            )
        body.append(line)
        index += 1

    # "\ No newline at end of file" markers trail the last counted line.
    while index < len(lines) and lines[index].startswith("\\"):
        body.append(lines[index])
        index += 1

    hunk = Hunk(
        origin_start=origin_start,
        origin_count=origin_count,
        dest_start=dest_start,
        dest_count=dest_count,
        header=header,
        lines=tuple(body),
    )
    return hunk, index


def _split_lines(text: str) -> list[str]:
    """Split on LF only, keeping terminators (CR stays part of the line)."""
    if not text:
        return []
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _paths_from_git_header(line: str) -> tuple[str, str]:
    rest = line[len(_FILE_HEADER) :].rstrip("\r\n")
    if rest.startswith('"'):
        end = _closing_quote(rest)
        old = rest[: end + 1]
        new = rest[end + 2 :]
    else:
        # Unquoted paths may contain spaces; "a/P b/P" splits evenly in the
        # common case where source and destination are the same.
        half = (len(rest) - 1) // 2
        if len(rest) % 2 == 1 and rest[half] == " " and rest[2:half] == rest[half + 3 :]:
            old, new = rest[:half], rest[half + 1 :]
        else:
            old, _, new = rest.rpartition(" b/")
            new = "b/" + new
    old_path = _strip_prefix(_unquote(old)) or old
    new_path = _strip_prefix(_unquote(new)) or new
    return old_path, new_path


def _closing_quote(text: str) -> int:
    index = 1
    while index < len(text):
        if text[index] == "\\":
            index += 2
            continue
        if text[index] == '"':
            return index
        index += 1
    return len(text) - 1


def _strip_prefix(path: str) -> str | None:
    if path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _unquote(path: str) -> str:
    """Undo git's C-style quoting of unusual path names."""
    if len(path) < 2 or path[0] != '"' or path[-1] != '"':
        return path
    body = path[1:-1]
    out = bytearray()
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            nxt = body[index + 1]
            if nxt in "01234567":
                out.append(int(body[index + 1 : index + 4], 8) & 0xFF)
                index += 4
                continue
            out += _QUOTE_ESCAPES.get(nxt, nxt).encode("utf-8")
            index += 2
            continue
        out += char.encode("utf-8", "surrogateescape")
        index += 1
    return out.decode("utf-8", "surrogateescape")
